"""
Workspace Permission Service
Entry points the rest of the application calls for sharing and file-tree operations
"""

from typing import Dict, Iterable, List, Optional, Set, Union

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from workspace_acl.core.cache import PermissionCache, get_permission_cache
from workspace_acl.core.exceptions import ForbiddenException, NotFoundException
from workspace_acl.core.logging import get_logger
from workspace_acl.core.permissions import PermissionResolver
from workspace_acl.db.session import get_session_maker
from workspace_acl.models.file import FileNode, FileTreeNode, FileType
from workspace_acl.models.permission import (
    Grant,
    GrantWithUser,
    InheritedGrant,
    PermissionLevel,
)
from workspace_acl.models.user import Principal
from workspace_acl.services.coordinator import InvalidationCoordinator, RebuildMode
from workspace_acl.services.grants import GrantStore
from workspace_acl.services.hierarchy import HierarchyIndex
from workspace_acl.services.materializer import EffectivePermissionMaterializer

logger = get_logger(__name__)


class WorkspacePermissionService:
    """
    Facade wiring the permission core together.

    Mutations check the caller's level, apply the change, then notify the
    coordinator as their last step. Queries resolve through the cache.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: Optional[PermissionCache] = None,
        rebuild_mode: Optional[Union[RebuildMode, str]] = None,
    ):
        self.cache = cache or PermissionCache()
        self.hierarchy = HierarchyIndex(session_factory)
        self.grants = GrantStore(session_factory, self.hierarchy)
        self.materializer = EffectivePermissionMaterializer(
            session_factory, self.hierarchy, self.grants
        )
        self.resolver = PermissionResolver(self.cache, self.materializer, session_factory)
        self.coordinator = InvalidationCoordinator(
            self.cache, self.materializer, self.hierarchy, mode=rebuild_mode
        )

    async def _require_file(self, file_id: int, resource: str = "File") -> None:
        if not await self.hierarchy.file_exists(file_id):
            raise NotFoundException(resource, details={"file_id": file_id})

    async def _require(
        self, principal: Principal, file_id: int, level: PermissionLevel
    ) -> None:
        await self.resolver.require(principal.user_id, file_id, level, principal.role)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def set_permission(
        self,
        principal: Principal,
        file_id: int,
        user_id: str,
        level: Union[PermissionLevel, str],
    ) -> Grant:
        """Share a file; the caller must hold edit on it"""
        await self._require_file(file_id)
        await self._require(principal, file_id, PermissionLevel.EDIT)

        grant = await self.grants.set_grant(file_id, user_id, level)
        await self.coordinator.grant_changed(file_id, user_id)
        return grant

    async def remove_permission(
        self, principal: Principal, file_id: int, user_id: str
    ) -> bool:
        await self._require_file(file_id)
        await self._require(principal, file_id, PermissionLevel.EDIT)

        removed = await self.grants.remove_grant(file_id, user_id)
        await self.coordinator.grant_changed(file_id, user_id)
        return removed

    async def move_file(
        self, principal: Principal, file_id: int, new_parent_id: Optional[int]
    ) -> FileNode:
        """
        Re-parent a file

        The caller needs edit on the file and on the target; moving to the
        top level is admin-only.
        """
        await self._require_file(file_id)
        await self._require(principal, file_id, PermissionLevel.EDIT)
        if new_parent_id is None:
            if not principal.is_admin:
                raise ForbiddenException(
                    message="Only administrators can move files to the top level",
                    details={"file_id": file_id},
                )
        else:
            await self._require_file(new_parent_id, "Parent file")
            await self._require(principal, new_parent_id, PermissionLevel.EDIT)

        move = await self.hierarchy.move_file(file_id, new_parent_id)
        await self.coordinator.file_moved(file_id, move.old_parent_id, move.new_parent_id)
        return move.file

    async def delete_file(self, principal: Principal, file_id: int) -> Set[int]:
        """Delete a file and its subtree. Returns the removed ids."""
        await self._require_file(file_id)
        await self._require(principal, file_id, PermissionLevel.EDIT)

        removed = await self.hierarchy.delete_file(file_id)
        await self.coordinator.file_deleted(file_id, removed)
        return removed

    async def create_file(
        self,
        principal: Principal,
        name: str,
        file_type: Union[FileType, str],
        parent_id: Optional[int] = None,
    ) -> FileNode:
        if parent_id is None:
            if not principal.is_admin:
                raise ForbiddenException(
                    message="Only administrators can create top-level files",
                )
        else:
            await self._require_file(parent_id, "Parent file")
            await self._require(principal, parent_id, PermissionLevel.EDIT)

        node = await self.hierarchy.create_file(
            name, FileType(file_type), parent_id, created_by=principal.user_id
        )
        await self.coordinator.file_created(node.id, parent_id)
        return node

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_my_level(
        self, principal: Principal, file_id: int
    ) -> Optional[PermissionLevel]:
        return await self.resolver.check(principal.user_id, file_id, user_role=principal.role)

    async def batch_get_my_levels(
        self, principal: Principal, file_ids: Iterable[int]
    ) -> Dict[int, Optional[PermissionLevel]]:
        return await self.resolver.batch_check(
            principal.user_id, file_ids, user_role=principal.role
        )

    async def can_edit(self, principal: Principal, file_id: int) -> bool:
        return await self.resolver.can_edit(principal.user_id, file_id, principal.role)

    async def can_share(self, principal: Principal, file_id: int) -> bool:
        return await self.resolver.can_share(principal.user_id, file_id, principal.role)

    async def list_file_permissions(
        self, principal: Principal, file_id: int
    ) -> List[GrantWithUser]:
        """Direct grants on a file, for the sharing dialog"""
        await self._require(principal, file_id, PermissionLevel.VIEW)
        return await self.grants.list_grants(file_id)

    async def list_file_permissions_with_inherited(
        self, principal: Principal, file_id: int
    ) -> List[InheritedGrant]:
        await self._require(principal, file_id, PermissionLevel.VIEW)
        return await self.grants.list_grants_with_inherited(file_id)

    async def get_accessible_files(
        self,
        principal: Principal,
        min_level: PermissionLevel = PermissionLevel.VIEW,
    ) -> Set[int]:
        """Ids of every file the caller holds at least ``min_level`` on"""
        if principal.is_admin:
            return await self.hierarchy.list_file_ids()
        await self.materializer.ensure_built(principal.user_id)
        return await self.materializer.accessible_file_ids(principal.user_id, min_level)

    async def get_filtered_tree(self, principal: Principal) -> List[FileTreeNode]:
        """File tree restricted to what the caller can view"""
        if principal.is_admin:
            return await self.hierarchy.get_tree()
        visible = await self.get_accessible_files(principal)
        return await self.hierarchy.get_tree(visible)

    async def users_with_access(
        self,
        principal: Principal,
        file_id: int,
        min_level: PermissionLevel = PermissionLevel.VIEW,
    ) -> List[str]:
        """Users who can see a file, e.g. the audience for a notification"""
        await self._require(principal, file_id, PermissionLevel.VIEW)
        return await self.materializer.users_with_access(file_id, min_level)

    async def drain(self) -> None:
        """Wait for deferred rebuilds to finish"""
        await self.coordinator.drain()


# Global singleton instance
_workspace_service: Optional[WorkspacePermissionService] = None


def get_workspace_service() -> WorkspacePermissionService:
    """
    Get or create the global workspace permission service

    Requires init_db() to have run.
    """
    global _workspace_service
    if _workspace_service is None:
        _workspace_service = WorkspacePermissionService(
            get_session_maker(), cache=get_permission_cache()
        )
        logger.info(
            f"Workspace permission service ready (rebuild mode: {_workspace_service.coordinator.mode.value})"
        )
    return _workspace_service
