"""
Order table
"""

from sqlalchemy import Column, String, Integer, Numeric, DateTime, ForeignKey, Index, text
from sqlalchemy.sql import func
from academy.core.database import Base

OPEN_ORDER_STATUSES_SQL = "status IN ('initiated', 'pending_payment')"


class OrderDB(Base):
    """One student's purchase of one course"""

    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, comment="Order ID")
    order_number = Column(String(20), nullable=False, unique=True, comment="Human readable TA-YYYYMMDD-XXXX")

    # References
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True, comment="Buyer")
    course_id = Column(String(36), ForeignKey("courses.id"), nullable=False, index=True, comment="Course")
    student_id = Column(String(36), ForeignKey("students.id"), comment="Student linked on fulfilment")
    coupon_id = Column(String(36), ForeignKey("coupons.id"), comment="Applied coupon")
    bank_account_id = Column(String(36), ForeignKey("bank_accounts.id"), comment="Chosen transfer account")

    # Amounts
    payment_method = Column(String(20), nullable=False, comment="mercadopago / bank_transfer / free")
    currency = Column(String(3), nullable=False, comment="USD / UYU")
    base_amount = Column(Numeric(12, 2), nullable=False, comment="Price before discount")
    discount_percent = Column(Integer, nullable=False, default=0, comment="Applied coupon percent")
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0, comment="Discount")
    final_amount = Column(Numeric(12, 2), nullable=False, comment="base_amount - discount_amount")

    status = Column(String(20), nullable=False, default="initiated", index=True, comment="Order state")

    # Payment provider
    mp_preference_id = Column(String(100), index=True, comment="Provider preference id")
    mp_checkout_url = Column(String(500), comment="Hosted checkout redirect URL")
    mp_payment_id = Column(String(50), index=True, comment="Provider payment id")
    mp_status = Column(String(30), comment="Last provider status seen")
    mp_status_detail = Column(String(100), comment="Last provider status detail")

    # Bank transfer
    transfer_reference = Column(String(100), comment="Reference typed by the payer")
    transfer_proof_url = Column(String(500), comment="Uploaded proof of payment")
    transfer_sent_at = Column(DateTime(timezone=True), comment="When the payer reported the transfer")

    # Timestamps
    paid_at = Column(DateTime(timezone=True), comment="Paid at")
    cancelled_at = Column(DateTime(timezone=True), comment="Cancelled at")
    rejected_at = Column(DateTime(timezone=True), comment="Payment rejected at")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True, comment="Created at")
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), comment="Updated at")

    __table_args__ = (
        # one open purchase intent per user and course
        Index(
            "uq_orders_open_intent",
            "user_id",
            "course_id",
            unique=True,
            postgresql_where=text(OPEN_ORDER_STATUSES_SQL),
            sqlite_where=text(OPEN_ORDER_STATUSES_SQL),
        ),
        {'comment': 'Orders'}
    )
