#!/usr/bin/env python3
"""
Integration Tests for Hierarchy Index
Tests for workspace_acl/services/hierarchy/service.py
"""

import pytest
from sqlalchemy import select, update

from workspace_acl.core.exceptions import (
    CorruptHierarchyException,
    InvalidMoveException,
    NotFoundException,
    ValidationException,
)
from workspace_acl.db.models import File, FilePermission
from workspace_acl.models.file import FileType
from workspace_acl.services.hierarchy import HierarchyIndex


async def make_chain(hierarchy, length):
    """Folders nested ``length`` deep; returns ids top-down"""
    ids = []
    parent_id = None
    for i in range(length):
        node = await hierarchy.create_file(f"level-{i}", FileType.FOLDER, parent_id)
        ids.append(node.id)
        parent_id = node.id
    return ids


async def set_parent(session_factory, file_id, parent_id):
    """Write parent_id directly, bypassing move validation"""
    async with session_factory() as session:
        async with session.begin():
            await session.execute(update(File).where(File.id == file_id).values(parent_id=parent_id))


@pytest.fixture
def hierarchy(service):
    return service.hierarchy


class TestTraversals:
    """Test ancestor and descendant queries"""

    @pytest.mark.asyncio
    async def test_ancestors_nearest_first(self, hierarchy, tree):
        """Test ancestors run from the file itself up to the root"""
        ancestors = await hierarchy.get_ancestors(tree["spec"])
        assert [a.id for a in ancestors] == [tree["spec"], tree["alpha"], tree["projects"], tree["root"]]

    @pytest.mark.asyncio
    async def test_ancestors_of_root(self, hierarchy, tree):
        assert await hierarchy.get_ancestor_ids(tree["root"]) == [tree["root"]]

    @pytest.mark.asyncio
    async def test_ancestors_of_unknown_file(self, hierarchy, tree):
        assert await hierarchy.get_ancestors(424242) == []

    @pytest.mark.asyncio
    async def test_descendants(self, hierarchy, tree):
        """Test descendants are transitive and exclude the file itself"""
        assert await hierarchy.get_descendants(tree["projects"]) == {
            tree["alpha"], tree["spec"], tree["budget"]
        }

    @pytest.mark.asyncio
    async def test_descendants_of_leaf(self, hierarchy, tree):
        assert await hierarchy.get_descendants(tree["spec"]) == set()

    @pytest.mark.asyncio
    async def test_descendant_depths(self, hierarchy, tree):
        depths = await hierarchy.get_descendant_depths(tree["root"])
        assert depths[tree["projects"]] == 1
        assert depths[tree["alpha"]] == 2
        assert depths[tree["spec"]] == 3
        assert depths[tree["archive"]] == 1

    @pytest.mark.asyncio
    async def test_subtree_includes_self(self, hierarchy, tree):
        assert await hierarchy.get_subtree(tree["alpha"]) == {tree["alpha"], tree["spec"]}

    @pytest.mark.asyncio
    async def test_is_descendant_of(self, hierarchy, tree):
        assert await hierarchy.is_descendant_of(tree["spec"], tree["root"]) is True
        assert await hierarchy.is_descendant_of(tree["root"], tree["spec"]) is False
        assert await hierarchy.is_descendant_of(tree["budget"], tree["alpha"]) is False

    @pytest.mark.asyncio
    async def test_file_is_not_its_own_descendant(self, hierarchy, tree):
        assert await hierarchy.is_descendant_of(tree["alpha"], tree["alpha"]) is False


class TestCorruptHierarchy:
    """Test traversal bounds on malformed data"""

    @pytest.mark.asyncio
    async def test_cycle_in_descendants(self, session_factory, tree):
        """Test a parent cycle raises instead of looping"""
        await set_parent(session_factory, tree["root"], tree["spec"])
        hierarchy = HierarchyIndex(session_factory, max_depth=16)

        with pytest.raises(CorruptHierarchyException):
            await hierarchy.get_descendants(tree["root"])

    @pytest.mark.asyncio
    async def test_cycle_in_ancestors(self, session_factory, tree):
        await set_parent(session_factory, tree["root"], tree["spec"])
        hierarchy = HierarchyIndex(session_factory, max_depth=16)

        with pytest.raises(CorruptHierarchyException) as exc_info:
            await hierarchy.get_ancestors(tree["spec"])
        assert exc_info.value.details["file_id"] == tree["spec"]

    @pytest.mark.asyncio
    async def test_depth_bound_on_descendants(self, session_factory, users):
        """Test a chain deeper than the bound is reported as corrupt"""
        hierarchy = HierarchyIndex(session_factory, max_depth=3)
        chain = await make_chain(hierarchy, 5)

        with pytest.raises(CorruptHierarchyException):
            await hierarchy.get_descendants(chain[0])

    @pytest.mark.asyncio
    async def test_depth_bound_on_ancestors(self, session_factory, users):
        hierarchy = HierarchyIndex(session_factory, max_depth=3)
        chain = await make_chain(hierarchy, 6)

        with pytest.raises(CorruptHierarchyException):
            await hierarchy.get_ancestors(chain[-1])

    @pytest.mark.asyncio
    async def test_within_bound_is_fine(self, session_factory, users):
        hierarchy = HierarchyIndex(session_factory, max_depth=3)
        chain = await make_chain(hierarchy, 4)

        assert await hierarchy.get_descendants(chain[0]) == set(chain[1:])
        assert len(await hierarchy.get_ancestors(chain[-1])) == 4


class TestCreate:
    """Test node creation"""

    @pytest.mark.asyncio
    async def test_create_under_container(self, hierarchy, tree):
        node = await hierarchy.create_file("notes", FileType.PAGE, tree["archive"], created_by="alice")
        assert node.parent_id == tree["archive"]
        assert node.type == FileType.PAGE
        assert await hierarchy.file_exists(node.id)

    @pytest.mark.asyncio
    async def test_create_under_leaf_rejected(self, hierarchy, tree):
        """Test pages cannot have children"""
        with pytest.raises(ValidationException):
            await hierarchy.create_file("child", FileType.PAGE, tree["spec"])

    @pytest.mark.asyncio
    async def test_create_under_missing_parent(self, hierarchy, tree):
        with pytest.raises(NotFoundException):
            await hierarchy.create_file("orphan", FileType.PAGE, 424242)


class TestMove:
    """Test re-parenting"""

    @pytest.mark.asyncio
    async def test_move(self, hierarchy, tree):
        move = await hierarchy.move_file(tree["alpha"], tree["archive"])

        assert move.old_parent_id == tree["projects"]
        assert move.new_parent_id == tree["archive"]
        assert await hierarchy.get_descendants(tree["archive"]) == {tree["alpha"], tree["spec"]}

    @pytest.mark.asyncio
    async def test_move_to_top_level(self, hierarchy, tree):
        move = await hierarchy.move_file(tree["archive"], None)
        assert move.file.parent_id is None

    @pytest.mark.asyncio
    async def test_move_under_own_descendant_rejected(self, hierarchy, tree):
        """Test moving a folder under its descendant raises and changes nothing"""
        with pytest.raises(InvalidMoveException) as exc_info:
            await hierarchy.move_file(tree["projects"], tree["alpha"])

        assert exc_info.value.details["target_parent_id"] == tree["alpha"]
        node = await hierarchy.get_file(tree["projects"])
        assert node.parent_id == tree["root"]

    @pytest.mark.asyncio
    async def test_move_under_itself_rejected(self, hierarchy, tree):
        with pytest.raises(InvalidMoveException):
            await hierarchy.move_file(tree["alpha"], tree["alpha"])

    @pytest.mark.asyncio
    async def test_move_under_leaf_rejected(self, hierarchy, tree):
        with pytest.raises(ValidationException):
            await hierarchy.move_file(tree["budget"], tree["spec"])

    @pytest.mark.asyncio
    async def test_move_missing_file(self, hierarchy, tree):
        with pytest.raises(NotFoundException):
            await hierarchy.move_file(424242, tree["root"])

    @pytest.mark.asyncio
    async def test_move_to_missing_parent(self, hierarchy, tree):
        with pytest.raises(NotFoundException):
            await hierarchy.move_file(tree["alpha"], 424242)


class TestDelete:
    """Test subtree deletion"""

    @pytest.mark.asyncio
    async def test_delete_subtree_and_grants(self, service, session_factory, tree):
        """Test deleting a folder removes its subtree and their grants"""
        await service.grants.set_grant(tree["spec"], "alice", "view")
        await service.grants.set_grant(tree["budget"], "bob", "edit")

        removed = await service.hierarchy.delete_file(tree["alpha"])

        assert removed == {tree["alpha"], tree["spec"]}
        assert not await service.hierarchy.file_exists(tree["spec"])
        async with session_factory() as session:
            result = await session.execute(select(FilePermission.file_id))
            assert set(result.scalars().all()) == {tree["budget"]}

    @pytest.mark.asyncio
    async def test_delete_missing(self, hierarchy, tree):
        with pytest.raises(NotFoundException):
            await hierarchy.delete_file(424242)


class TestTree:
    """Test nested tree building"""

    @pytest.mark.asyncio
    async def test_full_tree(self, hierarchy, tree):
        """Test folders are listed before leaves, then by name"""
        roots = await hierarchy.get_tree()

        assert [r.id for r in roots] == [tree["root"]]
        assert [c.name for c in roots[0].children] == ["archive", "projects"]
        projects = roots[0].children[1]
        assert [c.name for c in projects.children] == ["alpha", "budget"]

    @pytest.mark.asyncio
    async def test_filtered_tree_promotes_orphans(self, hierarchy, tree):
        """Test a visible node under a hidden parent shows at the top level"""
        roots = await hierarchy.get_tree({tree["alpha"], tree["spec"], tree["budget"]})

        assert [r.name for r in roots] == ["alpha", "budget"]
        assert [c.id for c in roots[0].children] == [tree["spec"]]

    @pytest.mark.asyncio
    async def test_list_file_ids(self, hierarchy, tree):
        assert await hierarchy.list_file_ids() == set(tree.values())
