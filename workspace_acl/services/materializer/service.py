"""
Effective Permission Materializer
Maintains the derived (user, file) -> level table
"""

import asyncio
from typing import Dict, Iterable, List, Optional, Set

from sqlalchemy import delete, insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from workspace_acl.core.config import settings
from workspace_acl.core.exceptions import RebuildFailedException
from workspace_acl.core.locks import KeyedLock
from workspace_acl.core.logging import get_logger
from workspace_acl.db.models import EffectivePermission, FilePermission
from workspace_acl.models.permission import EffectivePermissionRow, PermissionLevel
from workspace_acl.monitoring.metrics import track_rebuild
from workspace_acl.services.grants import GrantStore
from workspace_acl.services.hierarchy import HierarchyIndex
from workspace_acl.services.materializer.models import GrantReach, compute_effective_rows

logger = get_logger(__name__)


class EffectivePermissionMaterializer:
    """
    Rebuilds a user's effective rows from scratch: delete everything, then
    bulk-insert the recomputed set, in one transaction. Never patched
    incrementally.

    Rebuilds for the same user are serialized by a per-user lock; different
    users rebuild in parallel.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        hierarchy: HierarchyIndex,
        grants: GrantStore,
        rebuild_timeout: Optional[float] = None,
    ):
        self._session_factory = session_factory
        self._hierarchy = hierarchy
        self._grants = grants
        if rebuild_timeout is None:
            rebuild_timeout = settings.REBUILD_TIMEOUT_SECONDS
        self.rebuild_timeout = rebuild_timeout
        self._user_locks = KeyedLock()

    # ------------------------------------------------------------------
    # Rebuilds
    # ------------------------------------------------------------------

    async def compute_rows(self, user_id: str) -> List[EffectivePermissionRow]:
        """Effective rows the user should have, without writing them"""
        grants = await self._grants.list_grants_for_user(user_id)
        reaches = []
        for grant in grants:
            depths = await self._hierarchy.get_descendant_depths(grant.file_id)
            reaches.append(GrantReach(grant.file_id, grant.level, depths))
        return compute_effective_rows(user_id, reaches)

    async def _replace_rows(self, user_id: str, rows: List[EffectivePermissionRow]) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(
                    delete(EffectivePermission).where(EffectivePermission.user_id == user_id)
                )
                if rows:
                    await session.execute(
                        insert(EffectivePermission),
                        [
                            {
                                "user_id": row.user_id,
                                "file_id": row.file_id,
                                "permission": row.level,
                                "is_direct": row.is_direct,
                                "source_file_id": row.source_file_id,
                                "source_distance": row.source_distance,
                            }
                            for row in rows
                        ],
                    )

    async def _rebuild(self, user_id: str) -> int:
        async with self._user_locks.hold(user_id):
            rows = await self.compute_rows(user_id)
            await self._replace_rows(user_id, rows)
        logger.debug(f"Rebuilt {len(rows)} effective rows for user {user_id}")
        return len(rows)

    @track_rebuild(trigger="user")
    async def _bounded_rebuild(self, user_id: str) -> int:
        try:
            return await asyncio.wait_for(self._rebuild(user_id), timeout=self.rebuild_timeout)
        except asyncio.TimeoutError:
            raise RebuildFailedException(
                message=f"Rebuild for user {user_id} timed out after {self.rebuild_timeout}s",
                user_id=user_id,
                details={"timeout": self.rebuild_timeout},
            )
        except SQLAlchemyError as e:
            raise RebuildFailedException(
                message=f"Rebuild for user {user_id} failed: {e}",
                user_id=user_id,
            ) from e

    async def rebuild_for_user(self, user_id: str) -> int:
        """
        Replace every effective row of a user

        Returns:
            Number of rows written

        Raises:
            RebuildFailedException: storage error or timeout; the previous
                rows are left untouched
            CorruptHierarchyException: a grant's subtree could not be walked
        """
        return await self._bounded_rebuild(user_id)

    async def affected_users(self, file_id: int) -> Set[str]:
        """
        Users whose effective rows may change when the subtree at ``file_id``
        changes shape: those holding a row on it or sourced from it, and those
        with direct grants inside it
        """
        subtree = await self._hierarchy.get_subtree(file_id)
        async with self._session_factory() as session:
            from_rows = await session.execute(
                select(EffectivePermission.user_id)
                .where(
                    (EffectivePermission.file_id == file_id)
                    | (EffectivePermission.source_file_id == file_id)
                )
                .distinct()
            )
            from_grants = await session.execute(
                select(FilePermission.user_id)
                .where(FilePermission.file_id.in_(subtree))
                .distinct()
            )
            return set(from_rows.scalars().all()) | set(from_grants.scalars().all())

    async def users_reaching(self, file_id: int) -> Set[str]:
        """
        Users whose rows must cover ``file_id`` and anything placed under it

        Combines the table (users holding a row on it) with the grants on
        ``file_id`` and its ancestors, which also catches users whose rebuild
        for such a grant has not committed yet.
        """
        users = set(await self.users_with_access(file_id))
        ancestor_ids = await self._hierarchy.get_ancestor_ids(file_id)
        return users | await self._grants.holders_on(ancestor_ids)

    async def rebuild_for_file_hierarchy(
        self, file_id: int, extra_user_ids: Iterable[str] = ()
    ) -> Set[str]:
        """
        Rebuild every user affected by a change to the subtree at ``file_id``

        Returns:
            The user ids that were rebuilt
        """
        user_ids = await self.affected_users(file_id) | set(extra_user_ids)
        await self.rebuild_users(user_ids)
        return user_ids

    async def rebuild_users(self, user_ids: Iterable[str]) -> None:
        """Rebuild several users in parallel; raise after all have finished"""
        user_ids = sorted(set(user_ids))
        if not user_ids:
            return
        results = await asyncio.gather(
            *(self.rebuild_for_user(uid) for uid in user_ids),
            return_exceptions=True,
        )
        failed = {uid: res for uid, res in zip(user_ids, results) if isinstance(res, BaseException)}
        if failed:
            first = next(iter(failed.values()))
            if len(failed) == 1:
                raise first
            raise RebuildFailedException(
                message=f"Rebuild failed for {len(failed)} of {len(user_ids)} users",
                details={"failed_users": sorted(failed)},
            ) from first

    async def ensure_built(self, user_id: str) -> bool:
        """
        Structural-miss fallback: a user with grants but no rows has never been
        materialized (or lost rows), so build now instead of answering "no access".

        Returns:
            True if a rebuild ran
        """
        if await self.has_rows(user_id):
            return False
        if await self._grants.count_grants_for_user(user_id) == 0:
            return False
        logger.info(f"Structural miss for user {user_id}, rebuilding synchronously")
        await self.rebuild_for_user(user_id)
        return True

    async def purge_files(self, file_ids: Iterable[int]) -> int:
        """Delete rows whose target or source is one of ``file_ids``"""
        ids = set(file_ids)
        if not ids:
            return 0
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(EffectivePermission).where(
                        EffectivePermission.file_id.in_(ids)
                        | EffectivePermission.source_file_id.in_(ids)
                    )
                )
        logger.debug(f"Purged {result.rowcount} effective rows for {len(ids)} deleted files")
        return result.rowcount

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_level(self, user_id: str, file_id: int) -> Optional[PermissionLevel]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(EffectivePermission.permission).where(
                    EffectivePermission.user_id == user_id,
                    EffectivePermission.file_id == file_id,
                )
            )
            return result.scalar_one_or_none()

    async def get_levels(
        self, user_id: str, file_ids: Iterable[int]
    ) -> Dict[int, PermissionLevel]:
        """One bulk lookup; files without a row are absent from the result"""
        ids = list(file_ids)
        if not ids:
            return {}
        async with self._session_factory() as session:
            result = await session.execute(
                select(EffectivePermission.file_id, EffectivePermission.permission).where(
                    EffectivePermission.user_id == user_id,
                    EffectivePermission.file_id.in_(ids),
                )
            )
            return {file_id: level for file_id, level in result.all()}

    async def has_rows(self, user_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                select(EffectivePermission.file_id)
                .where(EffectivePermission.user_id == user_id)
                .limit(1)
            )
            return result.first() is not None

    async def get_rows(self, user_id: str) -> List[EffectivePermissionRow]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(EffectivePermission)
                .where(EffectivePermission.user_id == user_id)
                .order_by(EffectivePermission.file_id)
            )
            return [EffectivePermissionRow.model_validate(r) for r in result.scalars().all()]

    async def users_with_access(
        self, file_id: int, min_level: PermissionLevel = PermissionLevel.VIEW
    ) -> List[str]:
        """Distinct users holding at least ``min_level`` on a file"""
        levels = [lvl for lvl in PermissionLevel if lvl.satisfies(min_level)]
        async with self._session_factory() as session:
            result = await session.execute(
                select(EffectivePermission.user_id)
                .where(
                    EffectivePermission.file_id == file_id,
                    EffectivePermission.permission.in_(levels),
                )
                .distinct()
                .order_by(EffectivePermission.user_id)
            )
            return list(result.scalars().all())

    async def accessible_file_ids(
        self, user_id: str, min_level: PermissionLevel = PermissionLevel.VIEW
    ) -> Set[int]:
        levels = [lvl for lvl in PermissionLevel if lvl.satisfies(min_level)]
        async with self._session_factory() as session:
            result = await session.execute(
                select(EffectivePermission.file_id).where(
                    EffectivePermission.user_id == user_id,
                    EffectivePermission.permission.in_(levels),
                )
            )
            return set(result.scalars().all())
