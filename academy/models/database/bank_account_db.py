"""
Bank account table
"""

from sqlalchemy import Column, String, Integer, Text, Boolean, DateTime
from sqlalchemy.sql import func
from academy.core.database import Base


class BankAccountDB(Base):
    """Destination account shown in bank transfer instructions"""

    __tablename__ = "bank_accounts"

    id = Column(String(36), primary_key=True, comment="Bank account ID")
    bank_name = Column(String(100), nullable=False, comment="Bank")
    account_holder = Column(String(200), nullable=False, comment="Holder")
    account_type = Column(String(50), nullable=False, comment="Account type")
    account_number = Column(String(100), nullable=False, comment="Account number")
    currency = Column(String(3), nullable=False, comment="USD / UYU")
    swift_code = Column(String(20), comment="SWIFT")
    routing_number = Column(String(50), comment="Routing number")
    display_order = Column(Integer, nullable=False, default=0, comment="Sort order on checkout")
    notes = Column(Text, comment="Extra instructions")
    is_active = Column(Boolean, nullable=False, default=True, index=True, comment="Shown on checkout")

    created_at = Column(DateTime(timezone=True), server_default=func.now(), comment="Created at")

    __table_args__ = (
        {'comment': 'Bank accounts for transfers'}
    )
