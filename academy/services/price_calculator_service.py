"""
Price calculation
Base price per currency, coupon discount and currency-appropriate rounding
"""

from typing import Dict, Optional
from decimal import Decimal, ROUND_HALF_UP

from academy.models.checkout import Pricing
from academy.models.coupon import CouponValidation
from academy.models.course import Course
from academy.models.order import Currency

# USD is charged in cents, UYU in whole pesos
CURRENCY_QUANTUM = {
    Currency.USD: Decimal("0.01"),
    Currency.UYU: Decimal("1"),
}


def round_amount(amount: Decimal, currency) -> Decimal:
    return Decimal(amount).quantize(CURRENCY_QUANTUM[Currency(currency)], rounding=ROUND_HALF_UP)


def calculate_discount(base_amount: Decimal, discount_percent: int, currency="USD") -> Decimal:
    """round(base * percent / 100) in the currency's unit"""
    return round_amount(Decimal(base_amount) * Decimal(discount_percent) / Decimal(100), currency)


def calculate_pricing(base_amount: Decimal, currency, discount_percent: int = 0) -> Pricing:
    base = round_amount(base_amount, currency)
    discount = min(calculate_discount(base, discount_percent, currency), base)
    final = base - discount
    return Pricing(
        currency=Currency(currency),
        base_amount=base,
        discount_percent=discount_percent,
        discount_amount=discount,
        final_amount=final,
        is_free=final == 0
    )


class PriceCalculatorService:
    """Checkout pricing for both supported currencies"""

    def __init__(self, usd_to_uyu_rate: int = 42):
        self.usd_to_uyu_rate = Decimal(usd_to_uyu_rate)

    def base_price(self, course: Course, currency: Currency) -> Decimal:
        """Course price in the requested currency; UYU falls back to the configured rate"""
        if currency == Currency.USD:
            return round_amount(course.price_usd, Currency.USD)
        if course.price_uyu is not None:
            return round_amount(course.price_uyu, Currency.UYU)
        return round_amount(course.price_usd * self.usd_to_uyu_rate, Currency.UYU)

    def calculate(
        self,
        course: Course,
        currency: Currency,
        coupon_validation: Optional[CouponValidation] = None
    ) -> Pricing:
        discount_percent = 0
        if coupon_validation and coupon_validation.is_valid:
            discount_percent = coupon_validation.discount_percent
        return calculate_pricing(self.base_price(course, currency), currency, discount_percent)

    def calculate_all(
        self,
        course: Course,
        coupon_validation: Optional[CouponValidation] = None
    ) -> Dict[Currency, Pricing]:
        return {
            currency: self.calculate(course, currency, coupon_validation)
            for currency in Currency
        }

    @staticmethod
    def is_free(pricing: Dict[Currency, Pricing]) -> bool:
        """Free is decided on the USD price so both currencies route the same way"""
        return pricing[Currency.USD].is_free
