"""
User Models
Caller identity as supplied by the identity provider
"""

from enum import Enum

from pydantic import BaseModel, Field


class UserRole(str, Enum):
    ADMIN = "admin"
    MEMBER = "member"


class Principal(BaseModel):
    """The current caller. Trusted verbatim, never re-verified here."""
    user_id: str = Field(..., min_length=1)
    role: UserRole = UserRole.MEMBER

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN
