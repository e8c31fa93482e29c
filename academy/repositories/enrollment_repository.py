"""
Enrollment data access
"""

from typing import Optional
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from academy.models.enrollment import Enrollment, EnrollmentStatus
from academy.models.database.enrollment_db import EnrollmentDB
from academy.models.database.user_db import StudentDB


class EnrollmentRepository:
    """Enrollment data access"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_active(self, student_id: str, course_id: str) -> Optional[EnrollmentDB]:
        """The non-cancelled enrollment of a student in a course, if any"""
        result = await self.db.execute(
            select(EnrollmentDB).where(
                EnrollmentDB.student_id == student_id,
                EnrollmentDB.course_id == course_id,
                EnrollmentDB.status != EnrollmentStatus.CANCELLED.value
            )
        )
        return result.scalar_one_or_none()

    async def get_active_for_user(self, user_id: str, course_id: str) -> Optional[EnrollmentDB]:
        result = await self.db.execute(
            select(EnrollmentDB)
            .join(StudentDB, EnrollmentDB.student_id == StudentDB.id)
            .where(
                StudentDB.user_id == user_id,
                EnrollmentDB.course_id == course_id,
                EnrollmentDB.status != EnrollmentStatus.CANCELLED.value
            )
        )
        return result.scalar_one_or_none()

    async def create(
        self,
        student_id: str,
        course_id: str,
        order_id: Optional[str] = None,
        over_capacity: bool = False
    ) -> EnrollmentDB:
        enrollment = EnrollmentDB(
            id=str(uuid.uuid4()),
            student_id=student_id,
            course_id=course_id,
            order_id=order_id,
            status=EnrollmentStatus.CONFIRMED.value,
            over_capacity=over_capacity
        )
        self.db.add(enrollment)
        await self.db.flush()
        await self.db.refresh(enrollment)
        return enrollment

    def to_model(self, db_enrollment: EnrollmentDB) -> Enrollment:
        return Enrollment(
            id=db_enrollment.id,
            student_id=db_enrollment.student_id,
            course_id=db_enrollment.course_id,
            order_id=db_enrollment.order_id,
            status=db_enrollment.status,
            over_capacity=bool(db_enrollment.over_capacity),
            enrolled_at=db_enrollment.enrolled_at
        )
