"""
Keypool Observability Module.

Structured logging plus OpenTelemetry tracing and metrics for the
database layer.

Usage:
    from keypool.observability import configure_observability, get_tracer

    configure_observability()

    tracer = get_tracer(__name__)
    with tracer.start_as_current_span("my_operation"):
        ...
"""

from keypool.observability.config import (
    ObservabilityConfig,
    configure_observability,
    shutdown_observability,
)
from keypool.observability.logging import (
    JSONFormatter,
    StructuredLogger,
    TextFormatter,
    get_logger,
    setup_logging,
)
from keypool.observability.metrics import (
    MetricsCollector,
    MigrationMetrics,
    get_metrics,
)
from keypool.observability.tracing import (
    get_tracer,
    migration_span,
    trace_method,
)

__all__ = [
    # Configuration
    "ObservabilityConfig",
    "configure_observability",
    "shutdown_observability",
    # Logging
    "JSONFormatter",
    "TextFormatter",
    "StructuredLogger",
    "get_logger",
    "setup_logging",
    # Metrics
    "MetricsCollector",
    "MigrationMetrics",
    "get_metrics",
    # Tracing
    "get_tracer",
    "migration_span",
    "trace_method",
]
