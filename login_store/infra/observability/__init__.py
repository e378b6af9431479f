"""Observability infrastructure for the login store.

Provides structured logging, error events and metrics for
monitoring and debugging production deployments.
"""

from login_store.infra.observability.events import ErrorEvent, ErrorObserver, report_error
from login_store.infra.observability.logging import (
    CorrelationIDFilter,
    JSONFormatter,
    configure_logging,
    correlation_id_var,
    set_correlation_id,
    setup_logging,
)
from login_store.infra.observability.metrics import (
    get_metrics_text,
    get_registry,
    record_batch_flush,
    record_lock_acquisition,
    record_lock_client_error,
    record_store_operation,
)

__all__ = [
    # Logging
    "correlation_id_var",
    "set_correlation_id",
    "CorrelationIDFilter",
    "JSONFormatter",
    "setup_logging",
    "configure_logging",
    # Error events
    "ErrorEvent",
    "ErrorObserver",
    "report_error",
    # Metrics
    "get_registry",
    "get_metrics_text",
    "record_store_operation",
    "record_lock_acquisition",
    "record_lock_client_error",
    "record_batch_flush",
]
