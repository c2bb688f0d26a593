"""
Grant Store
Durable storage of direct (non-inherited) permission grants
"""

from typing import Iterable, List, Optional, Set, Union

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from workspace_acl.core.exceptions import NotFoundException
from workspace_acl.core.logging import get_logger
from workspace_acl.db.base import utcnow
from workspace_acl.db.models import File, FilePermission, User
from workspace_acl.models.permission import (
    Grant,
    GrantWithUser,
    InheritedGrant,
    PermissionLevel,
)
from workspace_acl.services.hierarchy import HierarchyIndex

logger = get_logger(__name__)


class GrantStore:
    """
    Grants are attached to exactly the file they were set on; nothing here
    cascades or touches derived state. Callers trigger invalidation.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        hierarchy: HierarchyIndex,
    ):
        self._session_factory = session_factory
        self._hierarchy = hierarchy

    async def set_grant(
        self,
        file_id: int,
        user_id: str,
        level: Union[PermissionLevel, str],
    ) -> Grant:
        """
        Create or update the grant for (file, user)

        Raises:
            NotFoundException: file or user does not exist
        """
        level = PermissionLevel.parse(level)

        async with self._session_factory() as session:
            async with session.begin():
                if await session.get(File, file_id) is None:
                    raise NotFoundException("File", details={"file_id": file_id})
                if await session.get(User, user_id) is None:
                    raise NotFoundException("User", details={"user_id": user_id})

                result = await session.execute(
                    select(FilePermission).where(
                        FilePermission.file_id == file_id,
                        FilePermission.user_id == user_id,
                    )
                )
                existing = result.scalar_one_or_none()

                if existing:
                    existing.permission = level
                    existing.updated_at = utcnow()
                    grant = existing
                    action = "Updated"
                else:
                    grant = FilePermission(file_id=file_id, user_id=user_id, permission=level)
                    session.add(grant)
                    action = "Granted"
                await session.flush()
                saved = Grant.model_validate(grant)

        logger.info(f"{action} {level.value} for user {user_id} on file {file_id}")
        return saved

    async def remove_grant(self, file_id: int, user_id: str) -> bool:
        """Delete the grant if present. Returns True if a row was removed."""
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(FilePermission).where(
                        FilePermission.file_id == file_id,
                        FilePermission.user_id == user_id,
                    )
                )
                removed = result.rowcount > 0

        if removed:
            logger.info(f"Revoked grant for user {user_id} on file {file_id}")
        return removed

    async def get_grant(self, file_id: int, user_id: str) -> Optional[Grant]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(FilePermission).where(
                    FilePermission.file_id == file_id,
                    FilePermission.user_id == user_id,
                )
            )
            grant = result.scalar_one_or_none()
            return Grant.model_validate(grant) if grant else None

    async def list_grants(self, file_id: int) -> List[GrantWithUser]:
        """Grants directly on a file with the grantee joined in, newest first"""
        async with self._session_factory() as session:
            result = await session.execute(
                select(FilePermission, User.name, User.email)
                .join(User, User.id == FilePermission.user_id)
                .where(FilePermission.file_id == file_id)
                .order_by(FilePermission.updated_at.desc(), FilePermission.id.desc())
            )
            return [
                GrantWithUser(
                    file_id=grant.file_id,
                    user_id=grant.user_id,
                    level=grant.permission,
                    created_at=grant.created_at,
                    updated_at=grant.updated_at,
                    user_name=name,
                    user_email=email,
                )
                for grant, name, email in result.all()
            ]

    async def list_grants_for_user(self, user_id: str) -> List[Grant]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(FilePermission)
                .where(FilePermission.user_id == user_id)
                .order_by(FilePermission.file_id)
            )
            return [Grant.model_validate(g) for g in result.scalars().all()]

    async def count_grants_for_user(self, user_id: str) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count()).select_from(FilePermission).where(
                    FilePermission.user_id == user_id
                )
            )
            return result.scalar_one()

    async def holders_on(self, file_ids: Iterable[int]) -> Set[str]:
        """Users holding a direct grant on any of ``file_ids``"""
        ids = set(file_ids)
        if not ids:
            return set()
        async with self._session_factory() as session:
            result = await session.execute(
                select(FilePermission.user_id)
                .where(FilePermission.file_id.in_(ids))
                .distinct()
            )
            return set(result.scalars().all())

    async def list_grants_with_inherited(self, file_id: int) -> List[InheritedGrant]:
        """
        Grants on the file and on every ancestor, nearest first

        Used by the sharing dialog to show where inherited access comes from.
        """
        ancestor_ids = await self._hierarchy.get_ancestor_ids(file_id)
        if not ancestor_ids:
            return []
        distance = {fid: i for i, fid in enumerate(ancestor_ids)}

        async with self._session_factory() as session:
            result = await session.execute(
                select(FilePermission, User.name, User.email)
                .join(User, User.id == FilePermission.user_id)
                .where(FilePermission.file_id.in_(ancestor_ids))
            )
            rows = result.all()

        inherited = [
            InheritedGrant(
                file_id=file_id,
                user_id=grant.user_id,
                level=grant.permission,
                created_at=grant.created_at,
                updated_at=grant.updated_at,
                user_name=name,
                user_email=email,
                source_file_id=grant.file_id,
                distance=distance[grant.file_id],
            )
            for grant, name, email in rows
        ]
        inherited.sort(key=lambda g: (g.distance, g.user_id))
        return inherited
