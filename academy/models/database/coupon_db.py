"""
Coupon table
"""

from sqlalchemy import Column, String, Integer, Numeric, Text, Boolean, DateTime, ForeignKey
from sqlalchemy.sql import func
from academy.core.database import Base


class CouponDB(Base):
    """Percentage discount coupon"""

    __tablename__ = "coupons"

    id = Column(String(36), primary_key=True, comment="Coupon ID")
    code = Column(String(50), nullable=False, unique=True, index=True, comment="Upper-cased code")
    discount_percent = Column(Integer, nullable=False, comment="0-100")

    # Usage limits
    max_uses = Column(Integer, nullable=False, default=1, comment="Maximum redemptions")
    current_uses = Column(Integer, nullable=False, default=0, comment="Redemptions so far")

    # Restrictions
    restricted_to_email = Column(String(255), comment="Lower-cased email the coupon is bound to")
    restricted_to_course_id = Column(String(36), ForeignKey("courses.id"), comment="Course the coupon is bound to")
    min_purchase_amount = Column(Numeric(12, 2), comment="Minimum base amount in USD")

    # Validity window, both ends open when NULL
    valid_from = Column(DateTime(timezone=True), comment="Valid from")
    expires_at = Column(DateTime(timezone=True), comment="Expires at")

    is_active = Column(Boolean, nullable=False, default=True, index=True, comment="Active flag")
    description = Column(Text, comment="Admin description")

    created_at = Column(DateTime(timezone=True), server_default=func.now(), comment="Created at")
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), comment="Updated at")

    __table_args__ = (
        {'comment': 'Discount coupons'}
    )
