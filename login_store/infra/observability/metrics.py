"""Prometheus metrics for observability.

Provides metrics collection for Redis store operations, distributed
lock coordination and login batch dispatch.
"""

import logging

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)

# Global registry for metrics
_registry = CollectorRegistry()


# Store Metrics
store_operations_total = Counter(
    "login_store_operations_total",
    "Total number of Redis store operations",
    ["operation", "status"],
    registry=_registry,
)

store_operation_duration_seconds = Histogram(
    "login_store_operation_duration_seconds",
    "Duration of Redis store operations in seconds",
    ["operation"],
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
    registry=_registry,
)

# Lock Metrics
lock_acquisitions_total = Counter(
    "login_store_lock_acquisitions_total",
    "Total number of distributed lock acquisitions",
    ["status"],
    registry=_registry,
)

lock_acquire_attempts = Histogram(
    "login_store_lock_acquire_attempts",
    "Attempts needed per lock acquisition",
    buckets=(1, 2, 3, 5, 8, 11),
    registry=_registry,
)

lock_client_errors_total = Counter(
    "login_store_lock_client_errors_total",
    "Transport errors raised by a connection during lock coordination",
    registry=_registry,
)

# Batch Dispatch Metrics
batch_flushes_total = Counter(
    "login_store_batch_flushes_total",
    "Total number of login batch flushes",
    ["status"],
    registry=_registry,
)

batch_flush_duration_seconds = Histogram(
    "login_store_batch_flush_duration_seconds",
    "Duration of login batch flushes in seconds",
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
    registry=_registry,
)


def get_registry() -> CollectorRegistry:
    """Get the metrics registry.

    Returns:
        Prometheus collector registry
    """
    return _registry


def get_metrics_text() -> str:
    """Get metrics in Prometheus text format.

    Returns:
        Metrics in Prometheus exposition format
    """
    return generate_latest(_registry).decode("utf-8")


def record_store_operation(operation: str, duration: float, status: str) -> None:
    """Record metrics for a Redis store operation.

    Args:
        operation: Facade operation name (get, hset, pipeline, ...)
        duration: Operation duration in seconds
        status: Outcome (success/error)
    """
    store_operations_total.labels(operation=operation, status=status).inc()
    store_operation_duration_seconds.labels(operation=operation).observe(duration)


def record_lock_acquisition(success: bool, attempts: int) -> None:
    """Record metrics for a lock acquisition.

    Args:
        success: Whether the lock was obtained
        attempts: Number of attempts made
    """
    status = "acquired" if success else "unavailable"
    lock_acquisitions_total.labels(status=status).inc()
    lock_acquire_attempts.observe(attempts)


def record_lock_client_error() -> None:
    """Record a transport error seen during lock coordination."""
    lock_client_errors_total.inc()


def record_batch_flush(success: bool, duration: float | None = None) -> None:
    """Record metrics for a batch flush.

    Args:
        success: Whether the flush completed without raising
        duration: Flush duration in seconds, when known
    """
    status = "success" if success else "failed"
    batch_flushes_total.labels(status=status).inc()
    if duration is not None:
        batch_flush_duration_seconds.observe(duration)


__all__ = [
    "get_registry",
    "get_metrics_text",
    "record_store_operation",
    "record_lock_acquisition",
    "record_lock_client_error",
    "record_batch_flush",
]
