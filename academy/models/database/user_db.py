"""
User and student tables
"""

from sqlalchemy import Column, String, Date, DateTime, ForeignKey
from sqlalchemy.sql import func
from academy.core.database import Base


class UserDB(Base):
    """Platform account, owned by the authentication collaborator"""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, comment="User ID")
    email = Column(String(255), nullable=False, unique=True, index=True, comment="Login email")
    name = Column(String(200), comment="Display name")
    role = Column(String(20), nullable=False, default="student", index=True, comment="student / educator / superadmin")

    created_at = Column(DateTime(timezone=True), server_default=func.now(), comment="Created at")

    __table_args__ = (
        {'comment': 'Platform users'}
    )


class StudentDB(Base):
    """Academic profile created on first enrollment"""

    __tablename__ = "students"

    id = Column(String(36), primary_key=True, comment="Student ID")
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, unique=True, comment="Owning user")
    first_name = Column(String(100), comment="First name")
    last_name = Column(String(100), comment="Last name")
    date_of_birth = Column(Date, comment="Required for certification registration")
    identity_document = Column(String(50), comment="Required for certification registration")

    created_at = Column(DateTime(timezone=True), server_default=func.now(), comment="Created at")

    __table_args__ = (
        {'comment': 'Student profiles'}
    )
