"""
ORM table package
"""

from .user_db import UserDB, StudentDB
from .course_db import CourseDB
from .coupon_db import CouponDB
from .bank_account_db import BankAccountDB
from .order_db import OrderDB
from .enrollment_db import EnrollmentDB

__all__ = [
    "UserDB",
    "StudentDB",
    "CourseDB",
    "CouponDB",
    "BankAccountDB",
    "OrderDB",
    "EnrollmentDB"
]
