"""
Course models
"""

from decimal import Decimal
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field
from enum import Enum


class CourseStatus(str, Enum):
    """Lifecycle tag, managed outside the checkout flow"""
    DRAFT = "draft"
    ANNOUNCED = "announced"
    ENROLLING = "enrolling"
    FULL = "full"
    IN_PROGRESS = "in_progress"
    FINISHED = "finished"
    AVAILABLE = "available"


# statuses that accept new enrollments
ENROLLABLE_STATUSES = frozenset({
    CourseStatus.ANNOUNCED,
    CourseStatus.ENROLLING,
    CourseStatus.AVAILABLE,
})


class CourseType(str, Enum):
    WSET = "wset"  # certification
    TALLER = "taller"  # workshop
    CATA = "cata"  # tasting
    CURSO = "curso"


class Modality(str, Enum):
    PRESENCIAL = "presencial"
    ONLINE = "online"


class Course(BaseModel):
    """Course as seen by the checkout flow"""

    id: str
    slug: str
    title: str
    type: CourseType
    wset_level: Optional[int] = None
    educator_name: Optional[str] = None
    price_usd: Decimal = Field(..., ge=0, description="Base price in USD")
    price_uyu: Optional[Decimal] = Field(None, ge=0, description="Explicit UYU price")
    max_capacity: Optional[int] = Field(None, ge=0)
    enrolled_count: int = Field(default=0, ge=0)
    status: CourseStatus
    modality: Modality = Modality.PRESENCIAL
    address: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    registration_deadline: Optional[datetime] = None

    @property
    def is_full(self) -> bool:
        return self.max_capacity is not None and self.enrolled_count >= self.max_capacity

    @property
    def is_certification(self) -> bool:
        return self.type == CourseType.WSET

    @property
    def location(self) -> str:
        if self.modality == Modality.ONLINE:
            return "Online"
        return self.address or "To be confirmed"
