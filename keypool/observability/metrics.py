"""
Keypool Metrics Collection.

Records migration metrics through the OpenTelemetry metrics API and keeps
an in-process snapshot of the same values for status reporting.

Metrics tracked:
- Migration units applied / failed
- Per-unit apply duration
- Migration passes run
"""

import threading
import time
from typing import Any, Dict, List, Optional

from opentelemetry import metrics

# Global metrics instance
_metrics_instance: Optional["MigrationMetrics"] = None
_metrics_lock = threading.Lock()


class MetricsCollector:
    """
    Metrics collector backed by an OpenTelemetry meter.

    Counter and histogram values are mirrored in memory so callers can
    inspect them without an exporter.
    """

    def __init__(self, service_name: str = "keypool"):
        """
        Initialize metrics collector.

        Args:
            service_name: Meter name
        """
        self.service_name = service_name
        self._meter = metrics.get_meter(service_name)
        self._otel_counters: Dict[str, Any] = {}
        self._otel_histograms: Dict[str, Any] = {}
        self._counters: Dict[str, float] = {}
        self._histograms: Dict[str, List[float]] = {}
        self._lock = threading.RLock()

    @staticmethod
    def _make_key(name: str, labels: Optional[Dict[str, str]] = None) -> str:
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"

    def counter(
        self,
        name: str,
        value: float = 1.0,
        labels: Optional[Dict[str, str]] = None,
    ):
        """Increment a counter metric."""
        if name not in self._otel_counters:
            self._otel_counters[name] = self._meter.create_counter(
                name=f"keypool.{name}",
                description=f"Keypool counter: {name}",
            )
        self._otel_counters[name].add(value, labels or {})

        key = self._make_key(name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0.0) + value

    def histogram(
        self,
        name: str,
        value: float,
        unit: str = "ms",
        labels: Optional[Dict[str, str]] = None,
    ):
        """Record a histogram value (typically latency)."""
        if name not in self._otel_histograms:
            self._otel_histograms[name] = self._meter.create_histogram(
                name=f"keypool.{name}",
                unit=unit,
                description=f"Keypool histogram: {name}",
            )
        self._otel_histograms[name].record(value, labels or {})

        key = self._make_key(name, labels)
        with self._lock:
            self._histograms.setdefault(key, []).append(value)

    def get_counter(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        """Get the in-process value of a counter."""
        with self._lock:
            return self._counters.get(self._make_key(name, labels), 0.0)

    def get_stats(self) -> Dict[str, Any]:
        """Get all in-process metric values."""
        with self._lock:
            return {
                "counters": dict(self._counters),
                "histograms": {k: list(v) for k, v in self._histograms.items()},
            }

    def timer(self, name: str, labels: Optional[Dict[str, str]] = None) -> "Timer":
        """Create a timer context manager for measuring duration."""
        return Timer(self, name, labels)


class Timer:
    """Context manager for timing operations."""

    def __init__(
        self,
        collector: MetricsCollector,
        name: str,
        labels: Optional[Dict[str, str]] = None,
    ):
        self._collector = collector
        self._name = name
        self._labels = labels
        self._start_time: Optional[float] = None
        self.duration_ms: float = 0

    def __enter__(self) -> "Timer":
        self._start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._start_time is not None:
            self.duration_ms = (time.perf_counter() - self._start_time) * 1000
            labels = dict(self._labels or {})
            labels["success"] = "false" if exc_type else "true"
            self._collector.histogram(self._name, self.duration_ms, "ms", labels)
        return False


class MigrationMetrics:
    """High-level metrics interface for migration passes."""

    def __init__(self, collector: Optional[MetricsCollector] = None):
        self._collector = collector or MetricsCollector()

    @property
    def collector(self) -> MetricsCollector:
        return self._collector

    def time_unit(self, version: str) -> Timer:
        """Time one unit's apply call."""
        return self._collector.timer("migration.apply.duration", {"version": version})

    def record_unit_applied(self, version: str):
        self._collector.counter("migration.applied", 1, {"version": version})

    def record_unit_failed(self, version: Optional[str], stage: str):
        self._collector.counter(
            "migration.failed", 1, {"version": version or "none", "stage": stage}
        )

    def record_pass(self, applied_count: int, success: bool):
        self._collector.counter(
            "migration.passes", 1, {"success": str(success).lower()}
        )
        self._collector.histogram(
            "migration.pass.units", applied_count, "1", {"success": str(success).lower()}
        )


def get_metrics() -> MigrationMetrics:
    """
    Get the global MigrationMetrics instance.

    Creates one if it doesn't exist.
    """
    global _metrics_instance

    with _metrics_lock:
        if _metrics_instance is None:
            _metrics_instance = MigrationMetrics()
        return _metrics_instance


def set_metrics(metrics_instance: MigrationMetrics):
    """Set the global MigrationMetrics instance."""
    global _metrics_instance

    with _metrics_lock:
        _metrics_instance = metrics_instance
