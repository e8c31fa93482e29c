"""
Service-level data models
"""

from .user import AuthenticatedUser, UserRole
from .course import Course, CourseStatus, CourseType, Modality, ENROLLABLE_STATUSES
from .coupon import Coupon, CouponValidation, CouponInvalidReason, CouponValidateRequest
from .bank_account import BankAccount
from .order import (
    Order,
    OrderCreate,
    OrderStatus,
    PaymentMethod,
    Currency,
    TransitionMetadata,
    TransitionResult,
    OrderFilters,
    OrderPage,
    ORDER_TRANSITIONS,
)
from .enrollment import Enrollment, EnrollmentStatus, FulfillmentResult
from .checkout import (
    CheckoutContext,
    CheckoutRequest,
    CheckoutResult,
    CheckoutOutcome,
    Eligibility,
    EligibilityBlockReason,
    Pricing,
    TransferSentRequest,
)
from .payment import PaymentInfo, PreferenceResult, ProviderPaymentStatus, WebhookOutcome
from .notification import EmailTemplate, OrderSnapshot

__all__ = [
    "AuthenticatedUser",
    "UserRole",
    "Course",
    "CourseStatus",
    "CourseType",
    "Modality",
    "ENROLLABLE_STATUSES",
    "Coupon",
    "CouponValidation",
    "CouponInvalidReason",
    "CouponValidateRequest",
    "BankAccount",
    "Order",
    "OrderCreate",
    "OrderStatus",
    "PaymentMethod",
    "Currency",
    "TransitionMetadata",
    "TransitionResult",
    "OrderFilters",
    "OrderPage",
    "ORDER_TRANSITIONS",
    "Enrollment",
    "EnrollmentStatus",
    "FulfillmentResult",
    "CheckoutContext",
    "CheckoutRequest",
    "CheckoutResult",
    "CheckoutOutcome",
    "Eligibility",
    "EligibilityBlockReason",
    "Pricing",
    "TransferSentRequest",
    "PaymentInfo",
    "PreferenceResult",
    "ProviderPaymentStatus",
    "WebhookOutcome",
    "EmailTemplate",
    "OrderSnapshot"
]
