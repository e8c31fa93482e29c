"""
Coupon validation
Stateless rule evaluation; uses are consumed only at fulfilment time
"""

from typing import Optional
from decimal import Decimal
from datetime import datetime

from academy.core.clock import utcnow, ensure_aware
from academy.models.coupon import Coupon, CouponValidation, CouponInvalidReason
from academy.repositories.coupon_repository import CouponRepository, normalize_coupon_code
from academy.services.price_calculator_service import calculate_discount


def evaluate_coupon(
    coupon: Optional[Coupon],
    code: str,
    course_id: str,
    email: str,
    amount: Decimal,
    currency: str = "USD",
    now: Optional[datetime] = None
) -> CouponValidation:
    """
    Apply the coupon rules in a fixed order; the first failing check wins:
    existence, active flag, valid_from, expires_at, remaining uses,
    course restriction, email restriction, minimum purchase amount.
    """
    code = normalize_coupon_code(code)
    now = now or utcnow()

    if coupon is None:
        return CouponValidation.invalid(code, CouponInvalidReason.NOT_FOUND)

    if not coupon.is_active:
        return CouponValidation.invalid(code, CouponInvalidReason.INACTIVE, coupon)

    valid_from = ensure_aware(coupon.valid_from)
    if valid_from and now < valid_from:
        return CouponValidation.invalid(code, CouponInvalidReason.NOT_YET_VALID, coupon)

    expires_at = ensure_aware(coupon.expires_at)
    if expires_at and now > expires_at:
        return CouponValidation.invalid(code, CouponInvalidReason.EXPIRED, coupon)

    if coupon.current_uses >= coupon.max_uses:
        return CouponValidation.invalid(code, CouponInvalidReason.MAX_USES_REACHED, coupon)

    if coupon.restricted_to_course_id and coupon.restricted_to_course_id != course_id:
        return CouponValidation.invalid(code, CouponInvalidReason.WRONG_COURSE, coupon)

    if coupon.restricted_to_email and coupon.restricted_to_email.strip().lower() != email.strip().lower():
        return CouponValidation.invalid(code, CouponInvalidReason.WRONG_EMAIL, coupon)

    if coupon.min_purchase_amount is not None and amount < coupon.min_purchase_amount:
        return CouponValidation.invalid(
            code,
            CouponInvalidReason.BELOW_MINIMUM,
            coupon,
            message=f"This coupon requires a minimum purchase of {coupon.min_purchase_amount} USD"
        )

    return CouponValidation.valid(
        coupon,
        calculate_discount(amount, coupon.discount_percent, currency)
    )


class CouponService:
    """Coupon lookup and validation"""

    def __init__(self, coupon_repo: CouponRepository):
        self.coupon_repo = coupon_repo

    async def get_coupon_by_code(self, code: str) -> Optional[Coupon]:
        db_coupon = await self.coupon_repo.get_by_code(code)
        if not db_coupon:
            return None
        return self.coupon_repo.to_model(db_coupon)

    async def validate(
        self,
        code: str,
        course_id: str,
        email: str,
        amount: Decimal,
        currency: str = "USD"
    ) -> CouponValidation:
        """Validate without side effects (never cached, never consumes a use)"""
        coupon = await self.get_coupon_by_code(code)
        return evaluate_coupon(coupon, code, course_id, email, amount, currency)
