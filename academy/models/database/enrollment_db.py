"""
Enrollment table
"""

from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Index, text
from sqlalchemy.sql import func
from academy.core.database import Base

ACTIVE_ENROLLMENT_SQL = "status != 'cancelled'"


class EnrollmentDB(Base):
    """Academic record of a student taking a course"""

    __tablename__ = "enrollments"

    id = Column(String(36), primary_key=True, comment="Enrollment ID")
    student_id = Column(String(36), ForeignKey("students.id"), nullable=False, index=True, comment="Student")
    course_id = Column(String(36), ForeignKey("courses.id"), nullable=False, index=True, comment="Course")
    order_id = Column(String(36), ForeignKey("orders.id"), comment="Originating order, NULL when granted by an admin")
    status = Column(String(20), nullable=False, default="confirmed", comment="pending / confirmed / cancelled")
    over_capacity = Column(Boolean, nullable=False, default=False, comment="Honoured although the course was full")

    enrolled_at = Column(DateTime(timezone=True), server_default=func.now(), comment="Enrolled at")
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), comment="Updated at")

    __table_args__ = (
        Index(
            "uq_enrollments_active_student_course",
            "student_id",
            "course_id",
            unique=True,
            postgresql_where=text(ACTIVE_ENROLLMENT_SQL),
            sqlite_where=text(ACTIVE_ENROLLMENT_SQL),
        ),
        {'comment': 'Enrollments'}
    )
