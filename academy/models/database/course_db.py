"""
Course table
"""

from sqlalchemy import Column, String, Integer, Numeric, DateTime
from sqlalchemy.sql import func
from academy.core.database import Base


class CourseDB(Base):
    """Course catalogue entry"""

    __tablename__ = "courses"

    id = Column(String(36), primary_key=True, comment="Course ID")
    slug = Column(String(200), nullable=False, unique=True, index=True, comment="URL slug")
    title = Column(String(200), nullable=False, comment="Title")
    type = Column(String(30), nullable=False, index=True, comment="wset / taller / cata / curso")
    wset_level = Column(Integer, comment="Certification level")
    educator_name = Column(String(200), comment="Educator display name")

    # Pricing
    price_usd = Column(Numeric(12, 2), nullable=False, default=0, comment="Base price in USD")
    price_uyu = Column(Numeric(12, 2), comment="Explicit UYU price, derived from USD when empty")

    # Capacity
    max_capacity = Column(Integer, comment="Seat limit, NULL means unlimited")
    enrolled_count = Column(Integer, nullable=False, default=0, comment="Denormalised active enrollments")

    # Lifecycle
    status = Column(String(20), nullable=False, default="draft", index=True, comment="Externally managed lifecycle tag")
    modality = Column(String(20), nullable=False, default="presencial", comment="presencial / online")
    address = Column(String(300), comment="Venue for in-person courses")
    start_date = Column(DateTime(timezone=True), comment="Start date")
    end_date = Column(DateTime(timezone=True), comment="End date")
    registration_deadline = Column(DateTime(timezone=True), comment="Last moment to enroll")

    created_at = Column(DateTime(timezone=True), server_default=func.now(), comment="Created at")
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), comment="Updated at")

    __table_args__ = (
        {'comment': 'Courses'}
    )
