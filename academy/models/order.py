"""
Order models and the order state machine
"""

from decimal import Decimal
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional
from pydantic import BaseModel, Field, model_validator
from enum import Enum


class OrderStatus(str, Enum):
    """Order state"""
    INITIATED = "initiated"  # context built, eligibility confirmed
    PENDING_PAYMENT = "pending_payment"  # waiting for gateway webhook or admin
    PAID = "paid"
    CANCELLED = "cancelled"
    PAYMENT_REJECTED = "payment_rejected"


class PaymentMethod(str, Enum):
    MERCADOPAGO = "mercadopago"
    BANK_TRANSFER = "bank_transfer"
    FREE = "free"


class Currency(str, Enum):
    USD = "USD"
    UYU = "UYU"


ORDER_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.INITIATED: frozenset({
        OrderStatus.PENDING_PAYMENT,
        OrderStatus.PAID,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.PENDING_PAYMENT: frozenset({
        OrderStatus.PAID,
        OrderStatus.PAYMENT_REJECTED,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.PAID: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.PAYMENT_REJECTED: frozenset(),
}

OPEN_ORDER_STATUSES = frozenset({OrderStatus.INITIATED, OrderStatus.PENDING_PAYMENT})


def allowed_sources(target: OrderStatus) -> List[OrderStatus]:
    """Statuses from which `target` may be reached"""
    return [status for status, targets in ORDER_TRANSITIONS.items() if target in targets]


def is_transition_allowed(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ORDER_TRANSITIONS[current]


class Order(BaseModel):
    """Order as read from the store"""

    id: str
    order_number: str
    user_id: str
    course_id: str
    student_id: Optional[str] = None
    coupon_id: Optional[str] = None
    bank_account_id: Optional[str] = None
    payment_method: PaymentMethod
    currency: Currency
    base_amount: Decimal = Field(..., ge=0)
    discount_percent: int = Field(default=0, ge=0, le=100)
    discount_amount: Decimal = Field(default=Decimal("0"), ge=0)
    final_amount: Decimal = Field(..., ge=0)
    status: OrderStatus
    mp_preference_id: Optional[str] = None
    mp_checkout_url: Optional[str] = None
    mp_payment_id: Optional[str] = None
    mp_status: Optional[str] = None
    mp_status_detail: Optional[str] = None
    transfer_reference: Optional[str] = None
    transfer_proof_url: Optional[str] = None
    transfer_sent_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def validate_amounts(self):
        """final_amount must equal base_amount - discount_amount"""
        if self.final_amount != self.base_amount - self.discount_amount:
            raise ValueError("final_amount must equal base_amount - discount_amount")
        return self


class OrderCreate(BaseModel):
    """Input for the order store's create operation"""

    user_id: str
    course_id: str
    payment_method: PaymentMethod
    currency: Currency
    coupon_id: Optional[str] = None
    bank_account_id: Optional[str] = None
    base_amount: Decimal = Field(..., ge=0)
    discount_percent: int = Field(default=0, ge=0, le=100)
    discount_amount: Decimal = Field(default=Decimal("0"), ge=0)
    final_amount: Decimal = Field(..., ge=0)


class TransitionMetadata(BaseModel):
    """Optional fields written together with a status transition"""

    mp_payment_id: Optional[str] = None
    mp_status: Optional[str] = None
    mp_status_detail: Optional[str] = None


class TransitionResult(BaseModel):
    """Outcome of a conditional status update"""

    order_id: str
    target: OrderStatus
    applied: bool  # False means 0 rows matched: already applied or no longer valid
    current_status: Optional[OrderStatus] = None


class OrderFilters(BaseModel):
    """Admin order listing filters"""

    status: Optional[OrderStatus] = None
    payment_method: Optional[PaymentMethod] = None
    course_id: Optional[str] = None
    user_id: Optional[str] = None
    limit: int = Field(default=50, ge=1, le=200)
    offset: int = Field(default=0, ge=0)


class OrderPage(BaseModel):
    orders: List[Order]
    total: int
