"""
Keypool Observability Configuration.

Centralized setup for logging, tracing and metrics.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from opentelemetry import metrics, trace
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased

from keypool.observability.logging import setup_logging

_observability_initialized = False
_tracer_provider: Optional[TracerProvider] = None
_meter_provider: Optional[MeterProvider] = None


@dataclass
class ObservabilityConfig:
    """
    Configuration for keypool observability.

    Attributes:
        service_name: Name of the service for tracing/metrics
        service_version: Version of the service
        environment: Deployment environment (dev, staging, prod)
        enable_tracing: Whether to install an SDK tracer provider
        enable_metrics: Whether to install an SDK meter provider
        enable_logging: Whether to configure structured logging
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format ("json" or "text")
        otlp_endpoint: OpenTelemetry collector endpoint
        trace_sample_rate: Sampling rate for traces (0.0-1.0)
        metric_export_interval_ms: How often to export metrics
    """

    service_name: str = "keypool"
    service_version: str = "1.2.0"
    environment: str = field(
        default_factory=lambda: os.environ.get("KEYPOOL_ENVIRONMENT", "development")
    )
    enable_tracing: bool = True
    enable_metrics: bool = True
    enable_logging: bool = True
    log_level: str = field(
        default_factory=lambda: os.environ.get("KEYPOOL_LOG_LEVEL", "INFO")
    )
    log_format: str = field(
        default_factory=lambda: os.environ.get("KEYPOOL_LOG_FORMAT", "json")
    )
    otlp_endpoint: Optional[str] = field(
        default_factory=lambda: os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT")
    )
    trace_sample_rate: float = 1.0
    metric_export_interval_ms: int = 60000

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "ObservabilityConfig":
        """Build from the `logging` / `observability` sections of a loaded config."""
        log_section = config.get("logging", {}) or {}
        obs_section = config.get("observability", {}) or {}
        defaults = cls()
        return cls(
            service_name=obs_section.get("service_name", defaults.service_name),
            environment=obs_section.get("environment", defaults.environment),
            enable_tracing=bool(obs_section.get("tracing", defaults.enable_tracing)),
            enable_metrics=bool(obs_section.get("metrics", defaults.enable_metrics)),
            log_level=log_section.get("level", defaults.log_level),
            log_format=log_section.get("format", defaults.log_format),
            otlp_endpoint=obs_section.get("otlp_endpoint", defaults.otlp_endpoint),
            trace_sample_rate=float(
                obs_section.get("trace_sample_rate", defaults.trace_sample_rate)
            ),
        )

    def resource(self) -> Resource:
        return Resource.create(
            {
                "service.name": self.service_name,
                "service.version": self.service_version,
                "deployment.environment": self.environment,
            }
        )


def configure_observability(
    config: Optional[ObservabilityConfig] = None,
) -> ObservabilityConfig:
    """
    Configure logging, tracing and metrics.

    Call once at service startup, before the migration pass.

    Args:
        config: Settings to apply (defaults read from the environment)

    Returns:
        The applied ObservabilityConfig
    """
    global _observability_initialized, _tracer_provider, _meter_provider

    config = config or ObservabilityConfig()

    if config.enable_logging:
        setup_logging(
            level=config.log_level,
            format_type=config.log_format,
            service_name=config.service_name,
        )

    if config.enable_tracing:
        _tracer_provider = _setup_tracing(config)

    if config.enable_metrics:
        _meter_provider = _setup_metrics(config)

    _observability_initialized = True

    logging.getLogger(__name__).info(
        "Keypool observability configured",
        extra={
            "service_name": config.service_name,
            "environment": config.environment,
            "tracing_enabled": config.enable_tracing,
            "metrics_enabled": config.enable_metrics,
        },
    )
    return config


def _setup_tracing(config: ObservabilityConfig) -> TracerProvider:
    provider = TracerProvider(
        resource=config.resource(),
        sampler=TraceIdRatioBased(config.trace_sample_rate),
    )

    if config.otlp_endpoint:
        try:
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
                OTLPSpanExporter,
            )
            from opentelemetry.sdk.trace.export import BatchSpanProcessor

            provider.add_span_processor(
                BatchSpanProcessor(OTLPSpanExporter(endpoint=config.otlp_endpoint))
            )
        except ImportError:
            logging.getLogger(__name__).warning(
                "OTLP exporter not available. Install with: "
                "pip install 'keypool[otlp]'"
            )

    trace.set_tracer_provider(provider)
    return provider


def _setup_metrics(config: ObservabilityConfig) -> MeterProvider:
    readers = []

    if config.otlp_endpoint:
        try:
            from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import (
                OTLPMetricExporter,
            )
            from opentelemetry.sdk.metrics.export import (
                PeriodicExportingMetricReader,
            )

            readers.append(
                PeriodicExportingMetricReader(
                    OTLPMetricExporter(endpoint=config.otlp_endpoint),
                    export_interval_millis=config.metric_export_interval_ms,
                )
            )
        except ImportError:
            logging.getLogger(__name__).warning(
                "OTLP metric exporter not available. Install with: "
                "pip install 'keypool[otlp]'"
            )

    provider = MeterProvider(resource=config.resource(), metric_readers=readers)
    metrics.set_meter_provider(provider)
    return provider


def shutdown_observability():
    """
    Shutdown observability providers.

    Flushes pending telemetry; call at service shutdown.
    """
    global _observability_initialized, _tracer_provider, _meter_provider

    if _tracer_provider is not None:
        try:
            _tracer_provider.shutdown()
        except Exception as e:
            logging.getLogger(__name__).error(f"Error shutting down tracer: {e}")

    if _meter_provider is not None:
        try:
            _meter_provider.shutdown()
        except Exception as e:
            logging.getLogger(__name__).error(f"Error shutting down meter: {e}")

    _observability_initialized = False
    _tracer_provider = None
    _meter_provider = None


def is_observability_initialized() -> bool:
    """Check if observability has been initialized."""
    return _observability_initialized
