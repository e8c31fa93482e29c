"""
Repository package - database access layer
"""

from .course_repository import CourseRepository
from .coupon_repository import CouponRepository
from .bank_account_repository import BankAccountRepository
from .user_repository import UserRepository
from .order_repository import OrderRepository
from .enrollment_repository import EnrollmentRepository

__all__ = [
    "CourseRepository",
    "CouponRepository",
    "BankAccountRepository",
    "UserRepository",
    "OrderRepository",
    "EnrollmentRepository"
]
