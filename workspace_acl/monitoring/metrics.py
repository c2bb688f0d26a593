"""
Prometheus metrics for the permission core
"""

import time
from functools import wraps
from typing import Callable

from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry
from prometheus_client.exposition import generate_latest

# Create a custom registry
metrics_registry = CollectorRegistry()

# Resolution metrics
permission_checks_total = Counter(
    "permission_checks_total",
    "Permission lookups by how they were answered",
    ["source"],
    registry=metrics_registry
)

permission_batch_size = Histogram(
    "permission_batch_size",
    "Number of file ids per batch check",
    buckets=(1, 5, 10, 25, 50, 100, 250, 500, 1000),
    registry=metrics_registry
)

# Materializer metrics
permission_rebuilds_total = Counter(
    "permission_rebuilds_total",
    "Effective permission rebuilds",
    ["trigger", "status"],
    registry=metrics_registry
)

permission_rebuild_duration_seconds = Histogram(
    "permission_rebuild_duration_seconds",
    "Effective permission rebuild time per user",
    buckets=(.005, .01, .025, .05, .1, .25, .5, 1.0, 2.5, 5.0, 10.0, 30.0),
    registry=metrics_registry
)

effective_rows_written = Histogram(
    "effective_rows_written",
    "Effective rows written by one rebuild",
    buckets=(0, 1, 10, 50, 100, 500, 1000, 5000, 10000),
    registry=metrics_registry
)

# Cache metrics
permission_cache_evictions_total = Counter(
    "permission_cache_evictions_total",
    "Cache entries evicted",
    ["scope"],
    registry=metrics_registry
)

# Coordinator metrics
background_rebuilds_in_flight = Gauge(
    "background_rebuilds_in_flight",
    "Deferred rebuild tasks not yet finished",
    registry=metrics_registry
)

invalidations_total = Counter(
    "invalidations_total",
    "Mutations processed by the invalidation coordinator",
    ["kind"],
    registry=metrics_registry
)

# Error metrics
errors_total = Counter(
    "errors_total",
    "Total errors",
    ["error_type", "operation"],
    registry=metrics_registry
)


def track_rebuild(trigger: str = "direct"):
    """Decorator to track rebuild latency and outcome"""
    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            start_time = time.time()
            status = "success"
            try:
                result = await func(*args, **kwargs)
                if isinstance(result, int):
                    effective_rows_written.observe(result)
                return result
            except Exception as e:
                status = "error"
                errors_total.labels(
                    error_type=type(e).__name__,
                    operation="rebuild"
                ).inc()
                raise
            finally:
                duration = time.time() - start_time
                permission_rebuilds_total.labels(trigger=trigger, status=status).inc()
                permission_rebuild_duration_seconds.observe(duration)
        return wrapper
    return decorator


def get_metrics() -> bytes:
    """Generate Prometheus metrics exposition format"""
    return generate_latest(metrics_registry)
