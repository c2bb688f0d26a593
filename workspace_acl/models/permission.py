"""
Permission Models
Permission levels and grant / effective-permission schemas
"""

from datetime import datetime
from enum import Enum
from typing import Optional, Union

from pydantic import AliasChoices, BaseModel, Field

from workspace_acl.core.exceptions import ValidationException


class PermissionLevel(str, Enum):
    """Share level, totally ordered view < comment < edit"""

    VIEW = "view"
    COMMENT = "comment"
    EDIT = "edit"

    @property
    def ordinal(self) -> int:
        return PERMISSION_HIERARCHY[self]

    def satisfies(self, required: Optional["PermissionLevel"]) -> bool:
        """True if this level is at least ``required`` (None always satisfied)"""
        if required is None:
            return True
        return self.ordinal >= required.ordinal

    @classmethod
    def parse(cls, value: Union[str, "PermissionLevel"]) -> "PermissionLevel":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValidationException(
                message=f"Unknown permission level: {value!r}",
                details={"allowed": [level.value for level in cls]},
            )


PERMISSION_HIERARCHY = {
    PermissionLevel.VIEW: 1,
    PermissionLevel.COMMENT: 2,
    PermissionLevel.EDIT: 3,
}


def satisfies(
    level: Optional[PermissionLevel], required: Optional[PermissionLevel]
) -> bool:
    """Null-safe level comparison: no level never satisfies anything"""
    if level is None:
        return False
    return level.satisfies(required)


class Grant(BaseModel):
    """A direct permission assignment on one file"""
    model_config = {"from_attributes": True}

    file_id: int
    user_id: str
    level: PermissionLevel = Field(..., validation_alias=AliasChoices("permission", "level"))
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class GrantWithUser(Grant):
    """Grant joined with the grantee's identity, for sharing dialogs"""
    user_name: Optional[str] = None
    user_email: Optional[str] = None


class InheritedGrant(GrantWithUser):
    """Grant on a file or one of its ancestors"""
    source_file_id: int
    distance: int = Field(..., ge=0, description="0 for the file itself")

    @property
    def is_inherited(self) -> bool:
        return self.distance > 0


class EffectivePermissionRow(BaseModel):
    """Materialized (user, file) -> level row"""
    model_config = {"from_attributes": True}

    user_id: str
    file_id: int
    level: PermissionLevel = Field(..., validation_alias=AliasChoices("permission", "level"))
    is_direct: bool
    source_file_id: int
    source_distance: int = 0
