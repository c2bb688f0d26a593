"""
SQLAlchemy Database Models
"""

from typing import Optional

from sqlalchemy import (
    Boolean,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from workspace_acl.db.base import Base, TimestampMixin
from workspace_acl.models.file import FileType
from workspace_acl.models.permission import PermissionLevel
from workspace_acl.models.user import UserRole


def _enum_column(enum_cls, name: str) -> SAEnum:
    # Stored as the lowercase value so rows stay readable outside the ORM
    return SAEnum(
        enum_cls,
        name=name,
        native_enum=False,
        length=16,
        values_callable=lambda members: [m.value for m in members],
    )


class User(TimestampMixin, Base):
    """User SQLAlchemy model, provisioned from the identity provider"""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    role: Mapped[UserRole] = mapped_column(
        _enum_column(UserRole, "user_role"), nullable=False, default=UserRole.MEMBER
    )


class File(TimestampMixin, Base):
    """File-tree node (folder, programme, page, sheet, form, upload)"""

    __tablename__ = "files"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(512), nullable=False)
    type: Mapped[FileType] = mapped_column(_enum_column(FileType, "file_type"), nullable=False)
    parent_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("files.id", ondelete="CASCADE"), nullable=True, index=True
    )
    created_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)


class FilePermission(TimestampMixin, Base):
    """Direct (non-inherited) grant of a level to a user on one file"""

    __tablename__ = "file_permissions"
    __table_args__ = (
        UniqueConstraint("file_id", "user_id", name="uq_file_permissions_file_user"),
        Index("ix_file_permissions_user_file", "user_id", "file_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    file_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("files.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(
        String(255), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    permission: Mapped[PermissionLevel] = mapped_column(
        _enum_column(PermissionLevel, "permission"), nullable=False
    )

    user: Mapped[User] = relationship(User, lazy="raise")


class EffectivePermission(Base):
    """Derived (user, file) -> level table, rebuilt per user"""

    __tablename__ = "effective_permissions"
    __table_args__ = (
        Index("ix_effective_permissions_user_permission", "user_id", "permission"),
    )

    user_id: Mapped[str] = mapped_column(
        String(255), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    file_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("files.id", ondelete="CASCADE"), primary_key=True, index=True
    )
    permission: Mapped[PermissionLevel] = mapped_column(
        _enum_column(PermissionLevel, "permission"), nullable=False
    )
    is_direct: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    source_file_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("files.id", ondelete="CASCADE"), nullable=False, index=True
    )
    source_distance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
