"""
Coupon models
"""

from decimal import Decimal
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field
from enum import Enum


class CouponInvalidReason(str, Enum):
    """Why a coupon cannot be applied; checked in this order"""
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    NOT_YET_VALID = "not_yet_valid"
    EXPIRED = "expired"
    MAX_USES_REACHED = "max_uses_reached"
    WRONG_COURSE = "wrong_course"
    WRONG_EMAIL = "wrong_email"
    BELOW_MINIMUM = "below_minimum"


COUPON_ERROR_MESSAGES = {
    CouponInvalidReason.NOT_FOUND: "Coupon not found",
    CouponInvalidReason.INACTIVE: "This coupon is not active",
    CouponInvalidReason.NOT_YET_VALID: "This coupon is not valid yet",
    CouponInvalidReason.EXPIRED: "This coupon has expired",
    CouponInvalidReason.MAX_USES_REACHED: "This coupon has reached its maximum number of uses",
    CouponInvalidReason.WRONG_COURSE: "This coupon is not valid for this course",
    CouponInvalidReason.WRONG_EMAIL: "This coupon is not valid for your account",
    CouponInvalidReason.BELOW_MINIMUM: "The purchase amount does not reach this coupon's minimum",
}


class Coupon(BaseModel):
    """Percentage discount coupon"""

    id: str
    code: str = Field(..., min_length=1, max_length=50)
    discount_percent: int = Field(..., ge=0, le=100)
    max_uses: int = Field(default=1, ge=0)
    current_uses: int = Field(default=0, ge=0)
    restricted_to_email: Optional[str] = None
    restricted_to_course_id: Optional[str] = None
    min_purchase_amount: Optional[Decimal] = Field(None, ge=0)
    valid_from: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    is_active: bool = True
    description: Optional[str] = None


class CouponValidation(BaseModel):
    """Tagged validation outcome: valid with a discount, or invalid with a reason"""

    is_valid: bool
    code: str
    reason: Optional[CouponInvalidReason] = None
    message: Optional[str] = None
    coupon: Optional[Coupon] = None
    discount_percent: int = 0
    discount_amount: Decimal = Decimal("0")

    @classmethod
    def valid(cls, coupon: Coupon, discount_amount: Decimal) -> "CouponValidation":
        return cls(
            is_valid=True,
            code=coupon.code,
            coupon=coupon,
            discount_percent=coupon.discount_percent,
            discount_amount=discount_amount,
        )

    @classmethod
    def invalid(
        cls,
        code: str,
        reason: CouponInvalidReason,
        coupon: Optional[Coupon] = None,
        message: Optional[str] = None
    ) -> "CouponValidation":
        return cls(
            is_valid=False,
            code=code,
            reason=reason,
            coupon=coupon,
            message=message or COUPON_ERROR_MESSAGES[reason],
        )


class CouponValidateRequest(BaseModel):
    """Coupon preview request from the checkout page"""

    course_id: str = Field(..., min_length=1)
    coupon_code: str = Field(..., min_length=1, max_length=50)
