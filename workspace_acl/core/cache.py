"""
Permission Cache
In-process TTL memo of resolved (user, file) permission levels
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from workspace_acl.core.config import settings
from workspace_acl.core.logging import get_logger
from workspace_acl.models.permission import PermissionLevel
from workspace_acl.monitoring.metrics import permission_cache_evictions_total

logger = get_logger(__name__)

Clock = Callable[[], datetime]
_Entry = Tuple[Optional[PermissionLevel], datetime]
Generation = Tuple[int, int]


@dataclass(frozen=True)
class CacheLookup:
    """Result of a cache read. ``level`` may be None on a hit (cached denial)."""
    hit: bool
    level: Optional[PermissionLevel] = None


MISS = CacheLookup(hit=False)


class PermissionCache:
    """
    Process-local cache keyed by user, then file.

    Losing an entry never causes a wrong answer, only a re-read of the
    materialized table. Staleness is bounded by the TTL even when an
    invalidation is missed. Each process has its own copy; nothing is
    broadcast between processes.
    """

    def __init__(
        self,
        ttl_seconds: Optional[int] = None,
        clock: Optional[Clock] = None,
    ):
        """
        Initialize the cache

        Args:
            ttl_seconds: Entry lifetime (default: PERMISSION_CACHE_TTL_SECONDS)
            clock: Zero-arg callable returning the current datetime
        """
        if ttl_seconds is None:
            ttl_seconds = settings.PERMISSION_CACHE_TTL_SECONDS
        self.ttl_seconds = ttl_seconds
        self._clock = clock or datetime.now
        self._cache: Dict[str, Dict[int, _Entry]] = {}
        self._lock = asyncio.Lock()
        # Bumped on every eviction; a fill started before one is dropped
        self._user_generations: Dict[str, int] = {}
        self._file_generation = 0
        self._hits = 0
        self._misses = 0
        logger.debug(f"PermissionCache initialized (TTL: {self.ttl_seconds}s)")

    def generation(self, user_id: str) -> Generation:
        """
        Token to take before reading the table for ``user_id``

        Pass it to ``set``/``set_many``; the write is skipped if an eviction
        touching the user happened in between.
        """
        return (self._file_generation, self._user_generations.get(user_id, 0))

    def _bump_user(self, user_id: str) -> None:
        self._user_generations[user_id] = self._user_generations.get(user_id, 0) + 1

    def _expiry(self) -> datetime:
        return self._clock() + timedelta(seconds=self.ttl_seconds)

    def _read(self, user_id: str, file_id: int, now: datetime) -> CacheLookup:
        user_entries = self._cache.get(user_id)
        if not user_entries or file_id not in user_entries:
            return MISS
        level, expiry = user_entries[file_id]
        if now >= expiry:
            del user_entries[file_id]
            if not user_entries:
                del self._cache[user_id]
            return MISS
        return CacheLookup(hit=True, level=level)

    async def get(self, user_id: str, file_id: int) -> CacheLookup:
        """
        Get a cached level

        Returns:
            CacheLookup with hit=False if absent or expired
        """
        async with self._lock:
            lookup = self._read(user_id, file_id, self._clock())
            if lookup.hit:
                self._hits += 1
            else:
                self._misses += 1
            return lookup

    async def get_many(
        self, user_id: str, file_ids: Iterable[int]
    ) -> Tuple[Dict[int, Optional[PermissionLevel]], List[int]]:
        """
        Partition file ids into cached and uncached

        Returns:
            (cached levels by file id, uncached file ids in input order)
        """
        cached: Dict[int, Optional[PermissionLevel]] = {}
        missing: List[int] = []
        seen = set()
        async with self._lock:
            now = self._clock()
            for file_id in file_ids:
                if file_id in seen:
                    continue
                seen.add(file_id)
                lookup = self._read(user_id, file_id, now)
                if lookup.hit:
                    cached[file_id] = lookup.level
                else:
                    missing.append(file_id)
            self._hits += len(cached)
            self._misses += len(missing)
        return cached, missing

    async def set(
        self,
        user_id: str,
        file_id: int,
        level: Optional[PermissionLevel],
        generation: Optional[Generation] = None,
    ) -> bool:
        """Store a level. Returns False if ``generation`` is stale."""
        async with self._lock:
            if generation is not None and generation != self.generation(user_id):
                return False
            self._cache.setdefault(user_id, {})[file_id] = (level, self._expiry())
        return True

    async def set_many(
        self,
        user_id: str,
        levels: Dict[int, Optional[PermissionLevel]],
        generation: Optional[Generation] = None,
    ) -> bool:
        if not levels:
            return True
        async with self._lock:
            if generation is not None and generation != self.generation(user_id):
                return False
            expiry = self._expiry()
            user_entries = self._cache.setdefault(user_id, {})
            for file_id, level in levels.items():
                user_entries[file_id] = (level, expiry)
        return True

    async def invalidate(self, user_id: str, file_id: int) -> bool:
        """Remove one (user, file) entry. Returns True if it was present."""
        async with self._lock:
            self._bump_user(user_id)
            user_entries = self._cache.get(user_id)
            if not user_entries or file_id not in user_entries:
                return False
            del user_entries[file_id]
            if not user_entries:
                del self._cache[user_id]
        permission_cache_evictions_total.labels(scope="entry").inc()
        return True

    async def invalidate_user(self, user_id: str) -> int:
        """Remove every entry for a user. Returns the number removed."""
        async with self._lock:
            self._bump_user(user_id)
            removed = len(self._cache.pop(user_id, {}))
        if removed:
            permission_cache_evictions_total.labels(scope="user").inc(removed)
            logger.debug(f"Cache evicted {removed} entries for user {user_id}")
        return removed

    async def invalidate_files(self, file_ids: Iterable[int]) -> int:
        """Remove entries for the given files across all users"""
        targets = set(file_ids)
        if not targets:
            return 0
        removed = 0
        async with self._lock:
            self._file_generation += 1
            for user_id in list(self._cache):
                user_entries = self._cache[user_id]
                for file_id in targets.intersection(user_entries):
                    del user_entries[file_id]
                    removed += 1
                if not user_entries:
                    del self._cache[user_id]
        if removed:
            permission_cache_evictions_total.labels(scope="file").inc(removed)
            logger.debug(f"Cache evicted {removed} entries for {len(targets)} files")
        return removed

    async def clear(self) -> int:
        """
        Clear all cache entries

        Returns:
            Number of entries cleared
        """
        async with self._lock:
            count = sum(len(entries) for entries in self._cache.values())
            self._file_generation += 1
            self._cache.clear()
        logger.info(f"Permission cache cleared: {count} entries")
        return count

    async def cleanup_expired(self) -> int:
        """
        Remove all expired entries from the cache

        Returns:
            Number of entries removed
        """
        async with self._lock:
            now = self._clock()
            removed = 0
            for user_id in list(self._cache):
                user_entries = self._cache[user_id]
                expired = [fid for fid, (_, expiry) in user_entries.items() if now >= expiry]
                for file_id in expired:
                    del user_entries[file_id]
                removed += len(expired)
                if not user_entries:
                    del self._cache[user_id]

        if removed:
            logger.info(f"Cleaned up {removed} expired permission cache entries")
        return removed

    async def get_stats(self) -> Dict[str, Any]:
        """
        Get cache statistics

        Returns:
            Dictionary with cache stats
        """
        async with self._lock:
            now = self._clock()
            total = 0
            active = 0
            for user_entries in self._cache.values():
                for _, expiry in user_entries.values():
                    total += 1
                    if now < expiry:
                        active += 1
            lookups = self._hits + self._misses

            return {
                "total_entries": total,
                "active_entries": active,
                "expired_entries": total - active,
                "users": len(self._cache),
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": self._hits / lookups if lookups else 0.0,
            }


# Global singleton instance
_permission_cache: Optional[PermissionCache] = None


def get_permission_cache() -> PermissionCache:
    """
    Get or create the global permission cache instance

    Returns:
        PermissionCache singleton
    """
    global _permission_cache
    if _permission_cache is None:
        _permission_cache = PermissionCache()
    return _permission_cache
