"""
Notification contract models
"""

from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, Field
from enum import Enum


class EmailTemplate(str, Enum):
    ORDER_CONFIRMATION = "order_confirmation"
    ADMIN_PAYMENT_NOTIFICATION = "admin_payment_notification"
    WSET_DATA_REMINDER = "wset_data_reminder"
    TRANSFER_INSTRUCTIONS = "transfer_instructions"
    ADMIN_TRANSFER_NOTIFICATION = "admin_transfer_notification"
    PAYMENT_REJECTED = "payment_rejected"


class OrderSnapshot(BaseModel):
    """Order data frozen at dispatch time for email rendering"""

    order_id: str
    order_number: str
    customer_name: str
    customer_email: str
    course_title: str
    course_type: str
    course_location: Optional[str] = None
    start_date: Optional[str] = None
    payment_method: str
    amount: Decimal
    currency: str
    coupon_code: Optional[str] = None
    discount_percent: int = 0
    status_detail: Optional[str] = None
    transfer_reference: Optional[str] = None
    transfer_proof_url: Optional[str] = None
    bank_accounts: List[dict] = Field(default_factory=list)
