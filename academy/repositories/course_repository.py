"""
Course data access
"""

from typing import Optional

from sqlalchemy import select, update, or_
from sqlalchemy.ext.asyncio import AsyncSession

from academy.models.course import Course
from academy.models.database.course_db import CourseDB


class CourseRepository:
    """Course data access"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, course_id: str) -> Optional[CourseDB]:
        """Fetch a course, always re-reading the row"""
        result = await self.db.execute(
            select(CourseDB)
            .where(CourseDB.id == course_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def try_reserve_seat(self, course_id: str) -> bool:
        """
        Compare-and-increment enrolled_count.
        Returns False when the course is already at capacity.
        """
        result = await self.db.execute(
            update(CourseDB)
            .where(
                CourseDB.id == course_id,
                or_(
                    CourseDB.max_capacity.is_(None),
                    CourseDB.enrolled_count < CourseDB.max_capacity
                )
            )
            .values(enrolled_count=CourseDB.enrolled_count + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def force_increment(self, course_id: str) -> None:
        """Increment enrolled_count ignoring capacity (paid orders are always honoured)"""
        await self.db.execute(
            update(CourseDB)
            .where(CourseDB.id == course_id)
            .values(enrolled_count=CourseDB.enrolled_count + 1)
            .execution_options(synchronize_session=False)
        )

    def to_model(self, db_course: CourseDB) -> Course:
        """Convert to the pydantic model"""
        return Course(
            id=db_course.id,
            slug=db_course.slug,
            title=db_course.title,
            type=db_course.type,
            wset_level=db_course.wset_level,
            educator_name=db_course.educator_name,
            price_usd=db_course.price_usd,
            price_uyu=db_course.price_uyu,
            max_capacity=db_course.max_capacity,
            enrolled_count=db_course.enrolled_count or 0,
            status=db_course.status,
            modality=db_course.modality,
            address=db_course.address,
            start_date=db_course.start_date,
            end_date=db_course.end_date,
            registration_deadline=db_course.registration_deadline
        )
