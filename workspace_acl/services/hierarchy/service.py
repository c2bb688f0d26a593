"""
Hierarchy Index
Parent/child queries and mutations over the file tree
"""

from typing import Dict, Iterable, List, Optional, Set

from sqlalchemy import Integer, delete, literal, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import aliased

from workspace_acl.core.config import settings
from workspace_acl.core.exceptions import (
    CorruptHierarchyException,
    InvalidMoveException,
    NotFoundException,
    ValidationException,
)
from workspace_acl.core.logging import get_logger
from workspace_acl.db.models import File, FilePermission
from workspace_acl.models.file import FileMove, FileNode, FileTreeNode, FileType

logger = get_logger(__name__)


class HierarchyIndex:
    """
    Read/write view over file-node storage.

    Every traversal is bounded by ``max_depth``; a walk that exceeds it, or
    that revisits a node, raises CorruptHierarchyException instead of looping.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_depth: Optional[int] = None,
    ):
        self._session_factory = session_factory
        if max_depth is None:
            max_depth = settings.HIERARCHY_MAX_DEPTH
        self.max_depth = max_depth

    # ------------------------------------------------------------------
    # Traversals
    # ------------------------------------------------------------------

    async def _ancestor_chain(self, session: AsyncSession, file_id: int) -> List[File]:
        """Nodes from ``file_id`` up to its root, iteratively"""
        chain: List[File] = []
        visited: Set[int] = set()
        current_id: Optional[int] = file_id

        while current_id is not None:
            if current_id in visited:
                raise CorruptHierarchyException(
                    message=f"Cycle detected while walking ancestors of file {file_id}",
                    file_id=file_id,
                    details={"revisited": current_id},
                )
            if len(chain) > self.max_depth:
                raise CorruptHierarchyException(
                    message=f"Ancestor walk of file {file_id} exceeded depth {self.max_depth}",
                    file_id=file_id,
                )
            visited.add(current_id)

            node = await session.get(File, current_id)
            if node is None:
                break
            chain.append(node)
            current_id = node.parent_id

        return chain

    async def _descendant_depths(self, session: AsyncSession, file_id: int) -> Dict[int, int]:
        """All descendants of ``file_id`` mapped to their distance from it"""
        max_depth = self.max_depth

        tree = (
            select(File.id.label("id"), literal(1, Integer).label("depth"))
            .where(File.parent_id == file_id)
            .cte("file_descendants", recursive=True)
        )
        child = aliased(File)
        tree = tree.union_all(
            select(child.id, tree.c.depth + 1)
            .where(child.parent_id == tree.c.id)
            .where(tree.c.depth <= max_depth)
        )

        result = await session.execute(select(tree.c.id, tree.c.depth))

        depths: Dict[int, int] = {}
        for node_id, depth in result.all():
            # In a forest every node is reached once, by one path
            if depth > max_depth or node_id == file_id or node_id in depths:
                raise CorruptHierarchyException(
                    message=f"Descendant walk of file {file_id} found a cycle or exceeded depth {max_depth}",
                    file_id=file_id,
                    details={"node_id": node_id, "depth": depth},
                )
            depths[node_id] = depth
        return depths

    async def get_ancestors(self, file_id: int) -> List[FileNode]:
        """
        Get the file and its ancestors, nearest first

        Returns:
            [file, parent, grandparent, ..., root]; empty if the file is unknown
        """
        async with self._session_factory() as session:
            chain = await self._ancestor_chain(session, file_id)
            return [FileNode.model_validate(node) for node in chain]

    async def get_ancestor_ids(self, file_id: int) -> List[int]:
        async with self._session_factory() as session:
            return [node.id for node in await self._ancestor_chain(session, file_id)]

    async def get_descendant_depths(self, file_id: int) -> Dict[int, int]:
        async with self._session_factory() as session:
            return await self._descendant_depths(session, file_id)

    async def get_descendants(self, file_id: int) -> Set[int]:
        """Ids of every node transitively under ``file_id`` (excluding itself)"""
        return set(await self.get_descendant_depths(file_id))

    async def get_subtree(self, file_id: int) -> Set[int]:
        """``file_id`` plus its descendants"""
        return {file_id} | await self.get_descendants(file_id)

    async def _is_descendant_of(
        self, session: AsyncSession, child_id: int, ancestor_id: int
    ) -> bool:
        if child_id == ancestor_id:
            return False
        chain = await self._ancestor_chain(session, child_id)
        return any(node.id == ancestor_id for node in chain[1:])

    async def is_descendant_of(self, child_id: int, ancestor_id: int) -> bool:
        """True if ``ancestor_id`` is a strict ancestor of ``child_id``"""
        async with self._session_factory() as session:
            return await self._is_descendant_of(session, child_id, ancestor_id)

    # ------------------------------------------------------------------
    # Node lookups
    # ------------------------------------------------------------------

    async def get_file(self, file_id: int) -> Optional[FileNode]:
        async with self._session_factory() as session:
            node = await session.get(File, file_id)
            return FileNode.model_validate(node) if node else None

    async def file_exists(self, file_id: int) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(select(File.id).where(File.id == file_id))
            return result.scalar_one_or_none() is not None

    async def list_file_ids(self) -> Set[int]:
        async with self._session_factory() as session:
            result = await session.execute(select(File.id))
            return set(result.scalars().all())

    async def get_tree(self, visible_ids: Optional[Iterable[int]] = None) -> List[FileTreeNode]:
        """
        Build the nested file tree, folders first then by name

        Args:
            visible_ids: If given, only these nodes are included; a visible
                node whose parent is hidden is shown at the top level
        """
        async with self._session_factory() as session:
            result = await session.execute(select(File).order_by(File.name, File.id))
            files = result.scalars().all()

        visible = set(visible_ids) if visible_ids is not None else None
        nodes: Dict[int, FileTreeNode] = {
            f.id: FileTreeNode.model_validate(f)
            for f in files
            if visible is None or f.id in visible
        }

        roots: List[FileTreeNode] = []
        for node in nodes.values():
            parent = nodes.get(node.parent_id) if node.parent_id is not None else None
            if parent is None:
                roots.append(node)
            else:
                parent.children.append(node)

        def sort_key(n: FileTreeNode):
            return (not n.is_folder, n.name.lower(), n.id)

        def sort_level(level: List[FileTreeNode]) -> None:
            level.sort(key=sort_key)
            for n in level:
                sort_level(n.children)

        sort_level(roots)
        return roots

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def _require_container(
        self, session: AsyncSession, parent_id: int, for_update: bool = False
    ) -> File:
        stmt = select(File).where(File.id == parent_id)
        if for_update:
            stmt = stmt.with_for_update()
        parent = (await session.execute(stmt)).scalar_one_or_none()
        if parent is None:
            raise NotFoundException("Parent file", details={"file_id": parent_id})
        if not parent.type.is_container:
            raise ValidationException(
                message=f"Files of type '{parent.type.value}' cannot contain other files",
                details={"parent_id": parent_id, "parent_type": parent.type.value},
            )
        return parent

    async def create_file(
        self,
        name: str,
        file_type: FileType,
        parent_id: Optional[int] = None,
        created_by: Optional[str] = None,
    ) -> FileNode:
        async with self._session_factory() as session:
            async with session.begin():
                if parent_id is not None:
                    await self._require_container(session, parent_id)
                node = File(
                    name=name,
                    type=FileType(file_type),
                    parent_id=parent_id,
                    created_by=created_by,
                )
                session.add(node)
                await session.flush()
                created = FileNode.model_validate(node)

        logger.info(f"Created {created.type.value} {created.id} under {parent_id}")
        return created

    async def move_file(self, file_id: int, new_parent_id: Optional[int]) -> FileMove:
        """
        Re-parent a node

        Raises:
            NotFoundException: file or target parent does not exist
            InvalidMoveException: target is the file itself or one of its descendants
            ValidationException: target cannot contain files
        """
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    select(File).where(File.id == file_id).with_for_update()
                )
                node = result.scalar_one_or_none()
                if node is None:
                    raise NotFoundException("File", details={"file_id": file_id})

                if new_parent_id is not None:
                    if new_parent_id == file_id or await self._is_descendant_of(
                        session, new_parent_id, file_id
                    ):
                        raise InvalidMoveException(
                            file_id=file_id, target_parent_id=new_parent_id
                        )
                    await self._require_container(session, new_parent_id, for_update=True)

                old_parent_id = node.parent_id
                node.parent_id = new_parent_id
                await session.flush()
                moved = FileMove(file=FileNode.model_validate(node), old_parent_id=old_parent_id)

        logger.info(f"Moved file {file_id} from {old_parent_id} to {new_parent_id}")
        return moved

    async def delete_file(self, file_id: int) -> Set[int]:
        """
        Delete a node, its subtree and the grants attached to them

        Returns:
            Ids of every removed node
        """
        async with self._session_factory() as session:
            async with session.begin():
                if await session.get(File, file_id) is None:
                    raise NotFoundException("File", details={"file_id": file_id})

                removed = {file_id} | set(await self._descendant_depths(session, file_id))
                await session.execute(
                    delete(FilePermission).where(FilePermission.file_id.in_(removed))
                )
                await session.execute(delete(File).where(File.id.in_(removed)))

        logger.info(f"Deleted file {file_id} and {len(removed) - 1} descendants")
        return removed
