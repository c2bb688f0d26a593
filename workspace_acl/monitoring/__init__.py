"""
Monitoring module for permission-core metrics
"""

from workspace_acl.monitoring.metrics import get_metrics, metrics_registry, track_rebuild

__all__ = [
    "metrics_registry",
    "get_metrics",
    "track_rebuild",
]
