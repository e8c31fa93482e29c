"""
Caller identity supplied by the authentication collaborator
"""

from typing import Optional
from pydantic import BaseModel, Field
from enum import Enum


class UserRole(str, Enum):
    """Closed set of platform roles"""
    STUDENT = "student"
    EDUCATOR = "educator"
    SUPERADMIN = "superadmin"


class AuthenticatedUser(BaseModel):
    """Already verified caller of an orchestrator entry point"""

    user_id: str = Field(..., min_length=1, description="User ID")
    email: str = Field(..., min_length=3, description="Login email")
    name: Optional[str] = Field(None, description="Display name")
    role: UserRole = Field(default=UserRole.STUDENT, description="Role")

    @property
    def is_superadmin(self) -> bool:
        return self.role == UserRole.SUPERADMIN
