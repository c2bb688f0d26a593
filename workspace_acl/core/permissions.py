"""
Permission Resolver
Answers "does user U hold at least level P on file F"
"""

import asyncio
from typing import Dict, Iterable, Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from workspace_acl.core.cache import PermissionCache
from workspace_acl.core.config import settings
from workspace_acl.core.exceptions import ForbiddenException, OperationTimeoutException
from workspace_acl.core.logging import get_logger
from workspace_acl.db.models import User
from workspace_acl.models.permission import PermissionLevel, satisfies
from workspace_acl.models.user import UserRole
from workspace_acl.monitoring.metrics import permission_batch_size, permission_checks_total
from workspace_acl.services.materializer import EffectivePermissionMaterializer

logger = get_logger(__name__)

Role = Union[UserRole, str, None]


class PermissionResolver:
    """Check and enforce effective file permissions"""

    def __init__(
        self,
        cache: PermissionCache,
        materializer: EffectivePermissionMaterializer,
        session_factory: async_sessionmaker[AsyncSession],
        batch_timeout: Optional[float] = None,
    ):
        self.cache = cache
        self.materializer = materializer
        self._session_factory = session_factory
        if batch_timeout is None:
            batch_timeout = settings.BATCH_CHECK_TIMEOUT_SECONDS
        self.batch_timeout = batch_timeout

    async def get_user_role(self, user_id: str) -> UserRole:
        """Get user's role from database; unknown users are members"""
        async with self._session_factory() as session:
            result = await session.execute(select(User.role).where(User.id == user_id))
            role = result.scalar_one_or_none()
        return role or UserRole.MEMBER

    async def _is_admin(self, user_id: str, user_role: Role) -> bool:
        if user_role is None:
            user_role = await self.get_user_role(user_id)
        # Unknown roles are not admin; they resolve through the table like members
        return user_role == UserRole.ADMIN

    async def _lookup(self, user_id: str, file_id: int) -> Optional[PermissionLevel]:
        level = await self.materializer.get_level(user_id, file_id)
        if level is None and await self.materializer.ensure_built(user_id):
            level = await self.materializer.get_level(user_id, file_id)
        return level

    async def check(
        self,
        user_id: str,
        file_id: int,
        required_level: Optional[PermissionLevel] = None,
        user_role: Role = None,
    ) -> Optional[PermissionLevel]:
        """
        Resolve a user's effective level on a file

        Args:
            user_id: User to check
            file_id: File to check
            required_level: Minimum level wanted (optional)
            user_role: Caller's role (optional, will fetch if not provided)

        Returns:
            The effective level if it satisfies ``required_level``, otherwise None
        """
        # Admin bypass - admins hold edit everywhere
        if await self._is_admin(user_id, user_role):
            permission_checks_total.labels(source="admin").inc()
            return PermissionLevel.EDIT

        generation = self.cache.generation(user_id)
        lookup = await self.cache.get(user_id, file_id)
        if lookup.hit:
            permission_checks_total.labels(source="cache_hit").inc()
            level = lookup.level
        else:
            permission_checks_total.labels(source="cache_miss").inc()
            level = await self._lookup(user_id, file_id)
            await self.cache.set(user_id, file_id, level, generation)

        if not satisfies(level, required_level):
            logger.debug(f"User {user_id} denied {required_level} on file {file_id}")
            return None
        return level

    async def _batch_lookup(
        self, user_id: str, file_ids: list
    ) -> Dict[int, Optional[PermissionLevel]]:
        generation = self.cache.generation(user_id)
        cached, missing = await self.cache.get_many(user_id, file_ids)
        permission_checks_total.labels(source="cache_hit").inc(len(cached))
        if not missing:
            return cached

        permission_checks_total.labels(source="cache_miss").inc(len(missing))
        found = await self.materializer.get_levels(user_id, missing)
        if not found and await self.materializer.ensure_built(user_id):
            found = await self.materializer.get_levels(user_id, missing)

        fetched = {file_id: found.get(file_id) for file_id in missing}
        await self.cache.set_many(user_id, fetched, generation)
        return {**cached, **fetched}

    async def batch_check(
        self,
        user_id: str,
        file_ids: Iterable[int],
        user_role: Role = None,
    ) -> Dict[int, Optional[PermissionLevel]]:
        """
        Resolve levels for many files with at most one table query

        Returns:
            Level (or None) for every distinct file id requested

        Raises:
            OperationTimeoutException: lookup exceeded BATCH_CHECK_TIMEOUT_SECONDS
        """
        file_ids = list(file_ids)
        permission_batch_size.observe(len(file_ids))

        if await self._is_admin(user_id, user_role):
            permission_checks_total.labels(source="admin").inc(len(file_ids))
            return {file_id: PermissionLevel.EDIT for file_id in file_ids}

        try:
            return await asyncio.wait_for(
                self._batch_lookup(user_id, file_ids), timeout=self.batch_timeout
            )
        except asyncio.TimeoutError:
            raise OperationTimeoutException(
                message=f"Batch permission check for user {user_id} timed out",
                operation="batch_check",
                timeout=self.batch_timeout,
            )

    async def require(
        self,
        user_id: str,
        file_id: int,
        required_level: PermissionLevel,
        user_role: Role = None,
    ) -> PermissionLevel:
        """
        Require a level or raise exception

        Raises:
            ForbiddenException: If user doesn't hold the required level
        """
        level = await self.check(user_id, file_id, required_level, user_role)
        if level is None:
            raise ForbiddenException(
                message=f"Access denied: '{required_level.value}' permission required",
                details={
                    "file_id": file_id,
                    "required_level": required_level.value,
                },
            )
        return level

    async def can_view(self, user_id: str, file_id: int, user_role: Role = None) -> bool:
        return await self.check(user_id, file_id, PermissionLevel.VIEW, user_role) is not None

    async def can_comment(self, user_id: str, file_id: int, user_role: Role = None) -> bool:
        return await self.check(user_id, file_id, PermissionLevel.COMMENT, user_role) is not None

    async def can_edit(self, user_id: str, file_id: int, user_role: Role = None) -> bool:
        return await self.check(user_id, file_id, PermissionLevel.EDIT, user_role) is not None

    async def can_share(self, user_id: str, file_id: int, user_role: Role = None) -> bool:
        """Sharing requires edit"""
        return await self.can_edit(user_id, file_id, user_role)
