"""
User and student data access
"""

from typing import List, Optional
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from academy.models.database.user_db import UserDB, StudentDB
from academy.models.user import UserRole


class UserRepository:
    """User and student data access"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, user_id: str) -> Optional[UserDB]:
        result = await self.db.execute(
            select(UserDB).where(UserDB.id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_superadmin_emails(self) -> List[str]:
        result = await self.db.execute(
            select(UserDB.email).where(UserDB.role == UserRole.SUPERADMIN.value)
        )
        return [row for row in result.scalars().all()]

    async def get_student_by_user_id(self, user_id: str) -> Optional[StudentDB]:
        result = await self.db.execute(
            select(StudentDB).where(StudentDB.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def create_student(self, user_id: str, full_name: Optional[str] = None) -> StudentDB:
        """Create the student profile, splitting the display name"""
        parts = (full_name or "").split()
        student = StudentDB(
            id=str(uuid.uuid4()),
            user_id=user_id,
            first_name=parts[0] if parts else None,
            last_name=" ".join(parts[1:]) or None
        )
        self.db.add(student)
        await self.db.flush()
        return student

    @staticmethod
    def is_certification_profile_complete(student: StudentDB) -> bool:
        """Certification bodies need full name, birth date and ID document"""
        return all([
            student.first_name,
            student.last_name,
            student.date_of_birth,
            student.identity_document
        ])
