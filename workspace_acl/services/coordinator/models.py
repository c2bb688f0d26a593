"""
Coordinator Models
Mutation kinds and the events published to outer cache layers
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet


class InvalidationKind(str, Enum):
    GRANT_CHANGED = "grant_changed"
    FILE_MOVED = "file_moved"
    FILE_DELETED = "file_deleted"
    FILE_CREATED = "file_created"


class RebuildMode(str, Enum):
    BACKGROUND = "background"
    SYNC = "sync"


@dataclass(frozen=True)
class InvalidationEvent:
    """
    Published once the synchronous evictions for a mutation are done.

    ``file_ids`` are the files whose tree position or access changed;
    ``user_ids`` are the users whose access may have changed.
    """
    kind: InvalidationKind
    file_ids: FrozenSet[int] = field(default_factory=frozenset)
    user_ids: FrozenSet[str] = field(default_factory=frozenset)
