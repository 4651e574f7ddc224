"""
Prometheus metrics for ADAPT-Heal observability.

Two layers live here:

* ``MetricsCollector`` - process-wide gauges, counters and histograms
  rendered in Prometheus text format.
* ``RemediationMetricsSink`` - the fire-and-forget contract the executor
  reports to (``record_metric``, ``record_step_metrics``,
  ``record_remediation_metrics``). ``PrometheusRemediationMetrics`` is the
  default implementation on top of ``MetricsCollector``.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class MetricsCollector:
    """
    Singleton metrics collector for ADAPT-Heal.

    Collects and exposes metrics in Prometheus-compatible format. Updates are
    guarded by a lock because actions may report from worker threads.
    """

    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialize()
        return cls._instance

    def _initialize(self):
        self._gauges: Dict[str, Dict[str, float]] = {}
        self._counters: Dict[str, Dict[str, int]] = {}
        self._histograms: Dict[str, Dict[str, list]] = {}
        self._update_lock = threading.Lock()

    def set_gauge(self, name: str, value: float, labels: Optional[Dict[str, str]] = None):
        """
        Set a gauge metric value.

        Args:
            name: Metric name
            value: Metric value
            labels: Label dictionary (e.g., {'plan_id': 'plan-1'})
        """
        label_key = self._make_label_key(labels or {})
        with self._update_lock:
            self._gauges.setdefault(name, {})[label_key] = value

    def increment_counter(self, name: str, value: int = 1, labels: Optional[Dict[str, str]] = None):
        """
        Increment a counter metric.

        Args:
            name: Metric name
            value: Increment amount (default 1)
            labels: Label dictionary
        """
        label_key = self._make_label_key(labels or {})
        with self._update_lock:
            series = self._counters.setdefault(name, {})
            series[label_key] = series.get(label_key, 0) + value

    def record_histogram(self, name: str, value: float, labels: Optional[Dict[str, str]] = None):
        """
        Record a histogram observation.

        Args:
            name: Metric name
            value: Observed value
            labels: Label dictionary
        """
        label_key = self._make_label_key(labels or {})
        with self._update_lock:
            self._histograms.setdefault(name, {}).setdefault(label_key, []).append(value)

    def get_counter(self, name: str, labels: Optional[Dict[str, str]] = None) -> int:
        """Current value of a counter series (0 if never incremented)."""
        return self._counters.get(name, {}).get(self._make_label_key(labels or {}), 0)

    def get_gauge(self, name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
        """Current value of a gauge series, if set."""
        return self._gauges.get(name, {}).get(self._make_label_key(labels or {}))

    def get_metrics(self) -> str:
        """
        Get all metrics in Prometheus text format.

        Returns:
            Prometheus-formatted metrics string
        """
        lines = []

        with self._update_lock:
            for name, labels_dict in self._gauges.items():
                lines.append(f"# TYPE {name} gauge")
                for label_key, value in labels_dict.items():
                    lines.append(f"{name}{{{label_key}}} {value}")

            for name, labels_dict in self._counters.items():
                lines.append(f"# TYPE {name} counter")
                for label_key, value in labels_dict.items():
                    lines.append(f"{name}{{{label_key}}} {value}")

            # Histograms are summarised as count and sum
            for name, labels_dict in self._histograms.items():
                lines.append(f"# TYPE {name} histogram")
                for label_key, values in labels_dict.items():
                    lines.append(f"{name}_count{{{label_key}}} {len(values)}")
                    lines.append(f"{name}_sum{{{label_key}}} {sum(values)}")

        return "\n".join(lines)

    def reset(self) -> None:
        """Drop all recorded series. Intended for tests."""
        with self._update_lock:
            self._gauges.clear()
            self._counters.clear()
            self._histograms.clear()

    def _make_label_key(self, labels: Dict[str, str]) -> str:
        if not labels:
            return ""
        return ",".join(f'{k}="{v}"' for k, v in sorted(labels.items()))


# Singleton instance
metrics = MetricsCollector()


@dataclass
class StepMetrics:
    """Outcome of a single remediation step."""
    plan_id: str
    step_id: str
    step_type: str
    status: str
    attempts: int
    duration_seconds: float
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class RemediationMetrics:
    """Outcome of a whole remediation plan."""
    plan_id: str
    correlation_id: str
    status: str
    steps_total: int
    steps_completed: int
    steps_failed: int
    duration_seconds: float
    rolled_back: bool = False
    rollback_failed_actions: int = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class RemediationMetricsSink:
    """
    Contract for receiving remediation execution events.

    Callers treat every method as fire-and-forget: exceptions raised by an
    implementation are logged and discarded by ``emit_safely``.
    """

    def record_metric(self, metric_id: str, name: str, value: float) -> None:
        raise NotImplementedError

    def record_step_metrics(self, step_metrics: StepMetrics) -> None:
        raise NotImplementedError

    def record_remediation_metrics(self, remediation_metrics: RemediationMetrics) -> None:
        raise NotImplementedError


class PrometheusRemediationMetrics(RemediationMetricsSink):
    """Remediation metrics sink backed by the process MetricsCollector."""

    def __init__(self, collector: Optional[MetricsCollector] = None):
        self.collector = collector or metrics

    def record_metric(self, metric_id: str, name: str, value: float) -> None:
        self.collector.set_gauge(f"adapt_heal_{name}", value, {"id": metric_id})

    def record_step_metrics(self, step_metrics: StepMetrics) -> None:
        labels = {"step_type": step_metrics.step_type, "status": step_metrics.status}
        self.collector.increment_counter("adapt_heal_remediation_step_total", 1, labels)
        self.collector.record_histogram(
            "adapt_heal_remediation_step_attempts",
            step_metrics.attempts,
            {"step_type": step_metrics.step_type},
        )
        self.collector.record_histogram(
            "adapt_heal_remediation_step_duration_seconds",
            step_metrics.duration_seconds,
            labels,
        )

    def record_remediation_metrics(self, remediation_metrics: RemediationMetrics) -> None:
        track_remediation_total(remediation_metrics.status)
        track_remediation_duration(
            remediation_metrics.duration_seconds, remediation_metrics.status
        )
        if remediation_metrics.rolled_back:
            result = "partial" if remediation_metrics.rollback_failed_actions else "success"
            track_rollback(result)


def emit_safely(sink: Optional[RemediationMetricsSink], method: str, *args) -> None:
    """
    Invoke a sink method, logging and swallowing any error it raises.

    Metrics delivery must never affect remediation outcomes.
    """
    if sink is None:
        return
    try:
        getattr(sink, method)(*args)
    except Exception as e:
        logger.warning(f"Metrics sink {type(sink).__name__}.{method} failed: {e}")


# Convenience functions for common metrics
def track_remediation_total(status: str = "success"):
    """Increment total remediation counter."""
    metrics.increment_counter("adapt_heal_remediation_total", 1, {"status": status})


def track_remediation_duration(duration_seconds: float, status: str = "success"):
    """Track remediation plan duration."""
    metrics.record_histogram(
        "adapt_heal_remediation_duration_seconds",
        duration_seconds,
        {"status": status}
    )


def track_rollback(result: str):
    """Count rollbacks by result (success or partial)."""
    metrics.increment_counter("adapt_heal_remediation_rollback_total", 1, {"result": result})


def track_advisory_request(result: str):
    """Count advisory model requests by result (success, failure, rejected)."""
    metrics.increment_counter("adapt_heal_advisory_requests_total", 1, {"result": result})


def get_metrics_text() -> str:
    """
    Get all metrics in Prometheus text format.

    This can be exposed via an HTTP endpoint (e.g., /metrics).
    """
    return metrics.get_metrics()
