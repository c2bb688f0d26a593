"""
Coordinator Services
Cache eviction and deferred rebuilds on mutation
"""

from workspace_acl.services.coordinator.models import (
    InvalidationEvent,
    InvalidationKind,
    RebuildMode,
)
from workspace_acl.services.coordinator.service import InvalidationCoordinator

__all__ = [
    "InvalidationCoordinator",
    "InvalidationEvent",
    "InvalidationKind",
    "RebuildMode",
]
