"""
Invalidation Coordinator
Decides, per mutation, what to evict now and what to rebuild later
"""

import asyncio
import inspect
from typing import Awaitable, Callable, Iterable, List, Optional, Set, Union

from workspace_acl.core.cache import PermissionCache
from workspace_acl.core.config import settings
from workspace_acl.core.exceptions import ValidationException
from workspace_acl.core.logging import get_logger
from workspace_acl.monitoring.metrics import (
    background_rebuilds_in_flight,
    errors_total,
    invalidations_total,
)
from workspace_acl.services.coordinator.models import (
    InvalidationEvent,
    InvalidationKind,
    RebuildMode,
)
from workspace_acl.services.hierarchy import HierarchyIndex
from workspace_acl.services.materializer import EffectivePermissionMaterializer

logger = get_logger(__name__)

Listener = Callable[[InvalidationEvent], Union[None, Awaitable[None]]]
DeferredJob = Callable[[], Awaitable[None]]


class InvalidationCoordinator:
    """
    Every mutation entry point calls exactly one method here as its last step.

    The synchronous part evicts cache entries and returns; the rebuild of the
    materialized table is deferred. Grant changes evict whole users; deletes
    and moves evict the touched files for all users. After a deferred rebuild
    the rebuilt users are evicted again, so a value cached while the rebuild
    was running cannot outlive it.

    If a deferred rebuild fails, the eviction has already happened and reads
    fall through to the table, where a structural miss triggers a lazy rebuild.
    """

    def __init__(
        self,
        cache: PermissionCache,
        materializer: EffectivePermissionMaterializer,
        hierarchy: HierarchyIndex,
        mode: Optional[Union[RebuildMode, str]] = None,
    ):
        try:
            self.mode = RebuildMode((mode or settings.REBUILD_MODE).lower())
        except ValueError:
            raise ValidationException(
                message=f"Unknown rebuild mode: {mode!r}",
                details={"allowed": [m.value for m in RebuildMode]},
            )
        self.cache = cache
        self.materializer = materializer
        self.hierarchy = hierarchy
        self._tasks: Set[asyncio.Task] = set()
        self._listeners: List[Listener] = []

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener: Listener) -> None:
        """Register a sync or async callable receiving every InvalidationEvent"""
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        self._listeners.remove(listener)

    async def _publish(self, event: InvalidationEvent) -> None:
        invalidations_total.labels(kind=event.kind.value).inc()
        for listener in list(self._listeners):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                errors_total.labels(error_type=type(e).__name__, operation="listener").inc()
                logger.error(f"Invalidation listener failed on {event.kind.value}: {e}")

    # ------------------------------------------------------------------
    # Deferred work
    # ------------------------------------------------------------------

    async def _run(self, kind: InvalidationKind, job: DeferredJob, reraise: bool) -> None:
        try:
            await job()
        except Exception as e:
            errors_total.labels(error_type=type(e).__name__, operation=kind.value).inc()
            logger.error(f"Deferred {kind.value} work failed: {e}")
            if reraise:
                raise

    async def _run_in_background(self, kind: InvalidationKind, job: DeferredJob) -> None:
        # Failures stop here; the next read re-derives lazily
        try:
            await self._run(kind, job, reraise=False)
        finally:
            background_rebuilds_in_flight.dec()

    async def _defer(self, kind: InvalidationKind, job: DeferredJob) -> None:
        if self.mode == RebuildMode.SYNC:
            await self._run(kind, job, reraise=True)
            return

        background_rebuilds_in_flight.inc()
        task = asyncio.create_task(self._run_in_background(kind, job))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    @property
    def pending(self) -> int:
        """Number of deferred jobs not yet finished"""
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for all outstanding background work, including work it schedules"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _rebuild_and_evict(self, user_ids: Iterable[str]) -> None:
        user_ids = set(user_ids)
        try:
            await self.materializer.rebuild_users(user_ids)
        finally:
            for user_id in user_ids:
                await self.cache.invalidate_user(user_id)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def grant_changed(self, file_id: int, user_id: str) -> None:
        """A grant for ``user_id`` on ``file_id`` was set, updated or removed"""
        await self.cache.invalidate_user(user_id)
        await self._publish(
            InvalidationEvent(
                kind=InvalidationKind.GRANT_CHANGED,
                file_ids=frozenset({file_id}),
                user_ids=frozenset({user_id}),
            )
        )
        logger.debug(f"Grant changed for user {user_id} on file {file_id}")
        await self._defer(
            InvalidationKind.GRANT_CHANGED,
            lambda: self._rebuild_and_evict({user_id}),
        )

    async def file_moved(
        self,
        file_id: int,
        old_parent_id: Optional[int],
        new_parent_id: Optional[int],
    ) -> None:
        """
        ``file_id`` now sits under ``new_parent_id``

        Must be called before any rebuild has seen the move: the affected
        users are read from the table while it still reflects the old tree.
        """
        subtree = await self.hierarchy.get_subtree(file_id)
        affected = await self.materializer.affected_users(file_id)
        for parent_id in (old_parent_id, new_parent_id):
            if parent_id is not None:
                affected |= await self.materializer.users_reaching(parent_id)

        await self.cache.invalidate_files(subtree)
        for user_id in affected:
            await self.cache.invalidate_user(user_id)

        parents = {p for p in (old_parent_id, new_parent_id) if p is not None}
        await self._publish(
            InvalidationEvent(
                kind=InvalidationKind.FILE_MOVED,
                file_ids=frozenset(subtree | parents),
                user_ids=frozenset(affected),
            )
        )
        logger.info(
            f"File {file_id} moved from {old_parent_id} to {new_parent_id}; "
            f"{len(affected)} users to rebuild"
        )
        if affected:
            await self._defer(
                InvalidationKind.FILE_MOVED,
                lambda: self._rebuild_and_evict(affected),
            )

    async def file_deleted(self, file_id: int, removed_ids: Iterable[int]) -> None:
        """``file_id`` and its subtree (``removed_ids``) are gone from the tree"""
        removed = set(removed_ids) | {file_id}
        await self.cache.invalidate_files(removed)
        await self._publish(
            InvalidationEvent(
                kind=InvalidationKind.FILE_DELETED,
                file_ids=frozenset(removed),
            )
        )
        logger.debug(f"File {file_id} deleted with {len(removed) - 1} descendants")

        async def purge() -> None:
            try:
                await self.materializer.purge_files(removed)
            finally:
                await self.cache.invalidate_files(removed)

        await self._defer(InvalidationKind.FILE_DELETED, purge)

    async def file_created(self, file_id: int, parent_id: Optional[int]) -> None:
        """
        A new node was created. Users reaching the parent, by row or by grant,
        need rows for the child; without any, nothing is rebuilt.
        """
        await self.cache.invalidate_files({file_id})
        users: Set[str] = set()
        if parent_id is not None:
            users = await self.materializer.users_reaching(parent_id)

        await self._publish(
            InvalidationEvent(
                kind=InvalidationKind.FILE_CREATED,
                file_ids=frozenset({file_id}),
                user_ids=frozenset(users),
            )
        )
        if users:
            await self._defer(
                InvalidationKind.FILE_CREATED,
                lambda: self._rebuild_and_evict(users),
            )
