"""
Checkout models: pricing, eligibility, context and submission results
"""

from decimal import Decimal
from typing import Dict, List, Optional
from pydantic import BaseModel, Field
from enum import Enum

from academy.models.bank_account import BankAccount
from academy.models.coupon import CouponValidation
from academy.models.course import Course
from academy.models.enrollment import Enrollment
from academy.models.order import Currency, Order, PaymentMethod


class EligibilityBlockReason(str, Enum):
    ALREADY_ENROLLED = "already_enrolled"
    COURSE_FULL = "course_full"
    COURSE_NOT_OPEN = "course_not_open"
    COURSE_FINISHED = "course_finished"


BLOCK_REASON_MESSAGES = {
    EligibilityBlockReason.ALREADY_ENROLLED: "You are already enrolled in this course",
    EligibilityBlockReason.COURSE_FULL: "This course is full",
    EligibilityBlockReason.COURSE_NOT_OPEN: "Enrollment for this course is not open",
    EligibilityBlockReason.COURSE_FINISHED: "This course has already finished",
}


class Pricing(BaseModel):
    """Charge for one currency"""

    currency: Currency
    base_amount: Decimal = Field(..., ge=0)
    discount_percent: int = Field(default=0, ge=0, le=100)
    discount_amount: Decimal = Field(default=Decimal("0"), ge=0)
    final_amount: Decimal = Field(..., ge=0)
    is_free: bool


class Eligibility(BaseModel):
    can_enroll: bool
    block_reason: Optional[EligibilityBlockReason] = None

    @property
    def message(self) -> Optional[str]:
        if self.block_reason is None:
            return None
        return BLOCK_REASON_MESSAGES[self.block_reason]


class CheckoutContext(BaseModel):
    """Everything the checkout page needs"""

    user_id: str
    email: str
    course: Course
    coupon_validation: Optional[CouponValidation] = None
    pricing: Dict[Currency, Pricing]
    is_free: bool
    eligibility: Eligibility
    bank_accounts: List[BankAccount] = Field(default_factory=list)
    open_order: Optional[Order] = None

    @property
    def can_enroll(self) -> bool:
        return self.eligibility.can_enroll

    @property
    def applied_coupon_id(self) -> Optional[str]:
        if self.coupon_validation and self.coupon_validation.is_valid:
            return self.coupon_validation.coupon.id
        return None


class CheckoutRequest(BaseModel):
    """Checkout submission"""

    course_id: str = Field(..., min_length=1)
    payment_method: PaymentMethod
    currency: Currency = Currency.USD
    coupon_code: Optional[str] = Field(None, max_length=50)
    bank_account_id: Optional[str] = None


class CheckoutOutcome(str, Enum):
    REDIRECT = "redirect"  # gateway hosted page
    PENDING_TRANSFER = "pending_transfer"  # bank transfer instructions
    COMPLETED = "completed"  # free enrollment done
    BLOCKED = "blocked"  # eligibility gate
    INVALID = "invalid"  # rejected input, e.g. coupon
    PROVIDER_ERROR = "provider_error"  # retryable gateway failure


class CheckoutResult(BaseModel):
    """Typed answer of a checkout submission, never a raw exception"""

    outcome: CheckoutOutcome
    order: Optional[Order] = None
    redirect_url: Optional[str] = None
    bank_accounts: List[BankAccount] = Field(default_factory=list)
    enrollment: Optional[Enrollment] = None
    block_reason: Optional[EligibilityBlockReason] = None
    error_code: Optional[str] = None
    message: Optional[str] = None
    retryable: bool = False

    @property
    def success(self) -> bool:
        return self.outcome in (
            CheckoutOutcome.REDIRECT,
            CheckoutOutcome.PENDING_TRANSFER,
            CheckoutOutcome.COMPLETED,
        )


class TransferSentRequest(BaseModel):
    """Payer's notice that a bank transfer was made"""

    reference: Optional[str] = Field(None, max_length=100)
    proof_url: Optional[str] = Field(None, max_length=500)
