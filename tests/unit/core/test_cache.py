#!/usr/bin/env python3
"""
Unit Tests for Permission Cache
Tests for workspace_acl/core/cache.py
"""

import pytest

from workspace_acl.core.cache import MISS, CacheLookup, PermissionCache, get_permission_cache
from workspace_acl.models.permission import PermissionLevel


class TestPermissionCacheBasics:
    """Test get/set on a single entry"""

    @pytest.mark.asyncio
    async def test_initialization(self, permission_cache):
        """Test cache starts empty with the requested TTL"""
        assert permission_cache.ttl_seconds == 30
        assert permission_cache._cache == {}

    @pytest.mark.asyncio
    async def test_set_and_get(self, permission_cache):
        """Test a stored level is returned as a hit"""
        await permission_cache.set("alice", 1, PermissionLevel.EDIT)

        lookup = await permission_cache.get("alice", 1)

        assert lookup == CacheLookup(hit=True, level=PermissionLevel.EDIT)

    @pytest.mark.asyncio
    async def test_get_missing_is_miss(self, permission_cache):
        """Test an absent entry is a miss"""
        assert await permission_cache.get("alice", 1) == MISS

    @pytest.mark.asyncio
    async def test_cached_denial_is_a_hit(self, permission_cache):
        """Test None is cached as a denial, distinct from a miss"""
        await permission_cache.set("alice", 1, None)

        lookup = await permission_cache.get("alice", 1)

        assert lookup.hit is True
        assert lookup.level is None

    @pytest.mark.asyncio
    async def test_entries_are_per_user(self, permission_cache):
        """Test one user's entry is not visible to another"""
        await permission_cache.set("alice", 1, PermissionLevel.VIEW)

        assert (await permission_cache.get("bob", 1)).hit is False

    def test_default_ttl_from_settings(self):
        """Test TTL falls back to PERMISSION_CACHE_TTL_SECONDS"""
        cache = PermissionCache()
        assert cache.ttl_seconds == 30

    def test_zero_ttl_is_kept(self):
        """Test an explicit zero TTL is not replaced by the default"""
        assert PermissionCache(ttl_seconds=0).ttl_seconds == 0


class TestPermissionCacheExpiry:
    """Test TTL expiry with an injected clock"""

    @pytest.mark.asyncio
    async def test_entry_valid_before_ttl(self, permission_cache, fake_clock):
        """Test entry survives until just before its TTL"""
        await permission_cache.set("alice", 1, PermissionLevel.VIEW)
        fake_clock.advance(29.9)

        assert (await permission_cache.get("alice", 1)).hit is True

    @pytest.mark.asyncio
    async def test_entry_expires_at_ttl(self, permission_cache, fake_clock):
        """Test entry is gone exactly at its TTL"""
        await permission_cache.set("alice", 1, PermissionLevel.VIEW)
        fake_clock.advance(30)

        assert (await permission_cache.get("alice", 1)).hit is False
        assert permission_cache._cache == {}

    @pytest.mark.asyncio
    async def test_set_refreshes_expiry(self, permission_cache, fake_clock):
        """Test re-setting an entry restarts its TTL"""
        await permission_cache.set("alice", 1, PermissionLevel.VIEW)
        fake_clock.advance(20)
        await permission_cache.set("alice", 1, PermissionLevel.EDIT)
        fake_clock.advance(20)

        lookup = await permission_cache.get("alice", 1)
        assert lookup.hit is True
        assert lookup.level == PermissionLevel.EDIT

    @pytest.mark.asyncio
    async def test_cleanup_expired(self, permission_cache, fake_clock):
        """Test cleanup removes only expired entries"""
        await permission_cache.set("alice", 1, PermissionLevel.VIEW)
        await permission_cache.set("bob", 2, PermissionLevel.VIEW)
        fake_clock.advance(15)
        await permission_cache.set("bob", 3, PermissionLevel.EDIT)
        fake_clock.advance(15)

        removed = await permission_cache.cleanup_expired()

        assert removed == 2
        assert "alice" not in permission_cache._cache
        assert (await permission_cache.get("bob", 3)).hit is True


class TestPermissionCacheBulk:
    """Test get_many / set_many"""

    @pytest.mark.asyncio
    async def test_get_many_partitions(self, permission_cache):
        """Test ids are split into cached and missing"""
        await permission_cache.set_many("alice", {1: PermissionLevel.VIEW, 2: None})

        cached, missing = await permission_cache.get_many("alice", [1, 2, 3, 4])

        assert cached == {1: PermissionLevel.VIEW, 2: None}
        assert missing == [3, 4]

    @pytest.mark.asyncio
    async def test_get_many_deduplicates(self, permission_cache):
        """Test repeated ids are reported once"""
        cached, missing = await permission_cache.get_many("alice", [5, 5, 6, 5])

        assert cached == {}
        assert missing == [5, 6]

    @pytest.mark.asyncio
    async def test_set_many_empty_is_noop(self, permission_cache):
        """Test set_many with nothing creates no user bucket"""
        await permission_cache.set_many("alice", {})
        assert permission_cache._cache == {}


class TestPermissionCacheInvalidation:
    """Test eviction granularity"""

    @pytest.mark.asyncio
    async def test_invalidate_single_entry(self, permission_cache):
        """Test invalidate removes one entry and reports it"""
        await permission_cache.set_many("alice", {1: PermissionLevel.VIEW, 2: PermissionLevel.EDIT})

        assert await permission_cache.invalidate("alice", 1) is True
        assert (await permission_cache.get("alice", 1)).hit is False
        assert (await permission_cache.get("alice", 2)).hit is True

    @pytest.mark.asyncio
    async def test_invalidate_missing_entry(self, permission_cache):
        """Test invalidating an absent entry returns False"""
        assert await permission_cache.invalidate("alice", 1) is False

    @pytest.mark.asyncio
    async def test_invalidate_user(self, permission_cache):
        """Test invalidate_user removes all entries for that user only"""
        await permission_cache.set_many("alice", {1: PermissionLevel.VIEW, 2: None})
        await permission_cache.set("bob", 1, PermissionLevel.VIEW)

        removed = await permission_cache.invalidate_user("alice")

        assert removed == 2
        assert (await permission_cache.get("alice", 1)).hit is False
        assert (await permission_cache.get("bob", 1)).hit is True

    @pytest.mark.asyncio
    async def test_invalidate_user_is_idempotent(self, permission_cache):
        """Test evicting an already-evicted user is harmless"""
        await permission_cache.set("alice", 1, PermissionLevel.VIEW)

        assert await permission_cache.invalidate_user("alice") == 1
        assert await permission_cache.invalidate_user("alice") == 0

    @pytest.mark.asyncio
    async def test_invalidate_files_across_users(self, permission_cache):
        """Test invalidate_files removes the files for every user"""
        await permission_cache.set_many("alice", {1: PermissionLevel.VIEW, 2: PermissionLevel.VIEW})
        await permission_cache.set_many("bob", {1: PermissionLevel.EDIT, 3: PermissionLevel.EDIT})

        removed = await permission_cache.invalidate_files([1, 2])

        assert removed == 3
        assert "alice" not in permission_cache._cache
        assert (await permission_cache.get("bob", 3)).hit is True

    @pytest.mark.asyncio
    async def test_clear(self, permission_cache):
        """Test clear removes everything and returns the count"""
        await permission_cache.set("alice", 1, PermissionLevel.VIEW)
        await permission_cache.set("bob", 2, PermissionLevel.VIEW)

        assert await permission_cache.clear() == 2
        assert await permission_cache.clear() == 0


class TestPermissionCacheGeneration:
    """Test fills started before an eviction are dropped"""

    @pytest.mark.asyncio
    async def test_set_with_current_generation(self, permission_cache):
        generation = permission_cache.generation("alice")

        assert await permission_cache.set("alice", 1, PermissionLevel.EDIT, generation) is True
        assert (await permission_cache.get("alice", 1)).hit is True

    @pytest.mark.asyncio
    async def test_user_eviction_drops_older_fill(self, permission_cache):
        """Test a level read before invalidate_user is not stored after it"""
        generation = permission_cache.generation("alice")
        await permission_cache.invalidate_user("alice")

        assert await permission_cache.set("alice", 1, PermissionLevel.EDIT, generation) is False
        assert (await permission_cache.get("alice", 1)).hit is False

    @pytest.mark.asyncio
    async def test_entry_eviction_drops_older_bulk_fill(self, permission_cache):
        generation = permission_cache.generation("alice")
        await permission_cache.invalidate("alice", 7)

        stored = await permission_cache.set_many(
            "alice", {1: PermissionLevel.VIEW, 2: None}, generation
        )

        assert stored is False
        assert (await permission_cache.get("alice", 1)).hit is False

    @pytest.mark.asyncio
    async def test_file_eviction_drops_fills_for_every_user(self, permission_cache):
        """Test invalidate_files moves the generation even for users with no entries"""
        alice = permission_cache.generation("alice")
        bob = permission_cache.generation("bob")
        await permission_cache.invalidate_files({3})

        assert await permission_cache.set("alice", 3, PermissionLevel.VIEW, alice) is False
        assert await permission_cache.set("bob", 3, PermissionLevel.VIEW, bob) is False

    @pytest.mark.asyncio
    async def test_other_user_eviction_keeps_fill(self, permission_cache):
        generation = permission_cache.generation("alice")
        await permission_cache.invalidate_user("bob")

        assert await permission_cache.set("alice", 1, PermissionLevel.VIEW, generation) is True


class TestPermissionCacheStats:
    """Test statistics"""

    @pytest.mark.asyncio
    async def test_stats(self, permission_cache, fake_clock):
        """Test stats count entries, users and hit rate"""
        await permission_cache.set("alice", 1, PermissionLevel.VIEW)
        await permission_cache.set("bob", 2, PermissionLevel.VIEW)
        await permission_cache.get("alice", 1)
        await permission_cache.get("alice", 9)
        fake_clock.advance(31)

        stats = await permission_cache.get_stats()

        assert stats["total_entries"] == 2
        assert stats["active_entries"] == 0
        assert stats["expired_entries"] == 2
        assert stats["users"] == 2
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5

    @pytest.mark.asyncio
    async def test_stats_empty(self, permission_cache):
        """Test hit rate is zero before any lookup"""
        stats = await permission_cache.get_stats()
        assert stats["hit_rate"] == 0.0


class TestGetPermissionCache:
    """Test singleton accessor"""

    def test_returns_same_instance(self):
        """Test get_permission_cache returns a singleton"""
        assert get_permission_cache() is get_permission_cache()
