"""
Enrollment models
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel
from enum import Enum


class EnrollmentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class Enrollment(BaseModel):
    id: str
    student_id: str
    course_id: str
    order_id: Optional[str] = None
    status: EnrollmentStatus
    over_capacity: bool = False
    enrolled_at: Optional[datetime] = None


class FulfillmentResult(BaseModel):
    """What the enrollment creator did for an order"""

    enrollment: Enrollment
    created: bool  # False when an active enrollment already existed
    is_new_student: bool = False
    profile_complete: bool = True  # certification data (birth date, ID) on file
