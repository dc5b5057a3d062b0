"""
Prometheus Metrics Collector

Lightweight queue metrics without external dependencies.
Generates Prometheus text exposition format (text/plain; version=0.0.4).
"""
import time
import threading
from typing import Dict, List, Optional
from dataclasses import dataclass, field
from enum import Enum


class MetricType(str, Enum):
    """Prometheus metric types."""
    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"


@dataclass
class MetricValue:
    """Single metric value with optional labels."""
    value: float
    labels: Dict[str, str] = field(default_factory=dict)


class _LabelledMetric:
    """Shared storage for metrics keyed by label set."""

    metric_type: MetricType

    def __init__(self, name: str, description: str, labels: Optional[List[str]] = None):
        self.name = name
        self.description = description
        self.label_names = labels or []
        self._values: Dict[tuple, float] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(labels: Dict[str, str]) -> tuple:
        return tuple(sorted(labels.items()))

    def _add(self, amount: float, labels: Dict[str, str]) -> None:
        key = self._key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + amount

    def get(self, **labels: str) -> float:
        """Current value for one label set (0 if never touched)."""
        with self._lock:
            return self._values.get(self._key(labels), 0.0)

    def collect(self) -> List[MetricValue]:
        """Collect all metric values."""
        with self._lock:
            return [MetricValue(value=v, labels=dict(k)) for k, v in self._values.items()]


class Counter(_LabelledMetric):
    """
    Prometheus Counter metric.

    Cumulative, only goes up. Used for: enqueued, completed, failed jobs.
    """

    metric_type = MetricType.COUNTER

    def inc(self, amount: float = 1.0, **labels: str) -> None:
        """Increment counter by amount."""
        if amount < 0:
            raise ValueError("Counter can only increase")
        self._add(amount, labels)


class Gauge(_LabelledMetric):
    """
    Prometheus Gauge metric.

    Can go up and down. Used for: in-flight jobs, queue depth.
    """

    metric_type = MetricType.GAUGE

    def set(self, value: float, **labels: str) -> None:
        """Set gauge to value."""
        with self._lock:
            self._values[self._key(labels)] = value

    def inc(self, amount: float = 1.0, **labels: str) -> None:
        self._add(amount, labels)

    def dec(self, amount: float = 1.0, **labels: str) -> None:
        self._add(-amount, labels)


class Histogram:
    """
    Prometheus Histogram metric.

    Samples observations into cumulative buckets.
    Used for: job processing duration.
    """

    metric_type = MetricType.HISTOGRAM

    # Job bodies range from sub-second bookkeeping to multi-minute AI generation
    DEFAULT_BUCKETS = (0.05, 0.1, 0.5, 1.0, 5.0, 15.0, 30.0, 60.0, 300.0, 900.0)

    def __init__(
        self,
        name: str,
        description: str,
        labels: Optional[List[str]] = None,
        buckets: Optional[tuple] = None
    ):
        self.name = name
        self.description = description
        self.label_names = labels or []
        self.buckets = tuple(sorted(buckets or self.DEFAULT_BUCKETS))
        self._series: Dict[tuple, Dict] = {}
        self._lock = threading.Lock()

    def observe(self, value: float, **labels: str) -> None:
        """Record an observation."""
        key = tuple(sorted(labels.items()))
        with self._lock:
            series = self._series.setdefault(
                key, {"buckets": [0] * len(self.buckets), "sum": 0.0, "count": 0}
            )
            series["sum"] += value
            series["count"] += 1
            for i, bound in enumerate(self.buckets):
                if value <= bound:
                    series["buckets"][i] += 1

    def collect(self) -> List[MetricValue]:
        """Collect bucket, sum and count values for every label set."""
        result = []
        with self._lock:
            for key, series in self._series.items():
                base = dict(key)
                for bound, count in zip(self.buckets, series["buckets"]):
                    result.append(MetricValue(value=count, labels={**base, "le": str(bound)}))
                result.append(MetricValue(value=series["count"], labels={**base, "le": "+Inf"}))
                result.append(MetricValue(value=series["sum"], labels={**base, "_metric": "sum"}))
                result.append(MetricValue(value=series["count"], labels={**base, "_metric": "count"}))
        return result


class Timer:
    """Context manager that observes elapsed seconds into a histogram."""

    def __init__(self, histogram: Histogram, **labels: str):
        self.histogram = histogram
        self.labels = labels
        self.start_time: Optional[float] = None
        self.elapsed: float = 0.0

    def __enter__(self) -> "Timer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *args) -> None:
        if self.start_time is not None:
            self.elapsed = time.perf_counter() - self.start_time
            self.histogram.observe(self.elapsed, **self.labels)


class MetricsRegistry:
    """
    Central registry for queue metrics.

    Provides singleton access and Prometheus text format export.
    """

    _instance: Optional["MetricsRegistry"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "MetricsRegistry":
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._metrics: Dict[str, Counter | Gauge | Histogram] = {}
        self._initialized = True
        self._setup_metrics()

    def _setup_metrics(self) -> None:
        """Initialize all queue metrics."""
        self.jobs_enqueued = self.counter(
            "jobqueue_jobs_enqueued_total",
            "Jobs added to a queue",
            ["queue"]
        )
        self.jobs_completed = self.counter(
            "jobqueue_jobs_completed_total",
            "Jobs acknowledged after a successful processor run",
            ["queue"]
        )
        self.jobs_failed = self.counter(
            "jobqueue_jobs_failed_total",
            "Processor invocations that reported failure or raised",
            ["queue"]
        )
        self.jobs_dead_lettered = self.counter(
            "jobqueue_jobs_dead_lettered_total",
            "Jobs removed after exhausting their retry budget",
            ["queue"]
        )
        self.poll_errors = self.counter(
            "jobqueue_poll_errors_total",
            "Receive/poll calls that failed and triggered a backoff",
            ["queue"]
        )
        self.jobs_in_flight = self.gauge(
            "jobqueue_jobs_in_flight",
            "Processor invocations currently running",
            ["queue"]
        )
        self.job_duration = self.histogram(
            "jobqueue_job_duration_seconds",
            "Processor invocation duration in seconds",
            ["queue"]
        )

    def counter(
        self,
        name: str,
        description: str,
        labels: Optional[List[str]] = None
    ) -> Counter:
        """Create and register a counter."""
        metric = Counter(name, description, labels)
        self._metrics[name] = metric
        return metric

    def gauge(
        self,
        name: str,
        description: str,
        labels: Optional[List[str]] = None
    ) -> Gauge:
        """Create and register a gauge."""
        metric = Gauge(name, description, labels)
        self._metrics[name] = metric
        return metric

    def histogram(
        self,
        name: str,
        description: str,
        labels: Optional[List[str]] = None,
        buckets: Optional[tuple] = None
    ) -> Histogram:
        """Create and register a histogram."""
        metric = Histogram(name, description, labels, buckets)
        self._metrics[name] = metric
        return metric

    def export(self) -> str:
        """
        Export all metrics in Prometheus text exposition format.

        Format specification:
        https://prometheus.io/docs/instrumenting/exposition_formats/
        """
        lines = []

        for name, metric in self._metrics.items():
            lines.append(f"# HELP {name} {metric.description}")
            lines.append(f"# TYPE {name} {metric.metric_type.value}")

            for mv in metric.collect():
                labels = dict(mv.labels)
                metric_name = name
                if isinstance(metric, Histogram):
                    if "_metric" in labels:
                        metric_name = f"{name}_{labels.pop('_metric')}"
                    else:
                        metric_name = f"{name}_bucket"

                lines.append(f"{metric_name}{self._format_labels(labels)} {mv.value}")

            lines.append("")

        return "\n".join(lines)

    def _format_labels(self, labels: Dict[str, str]) -> str:
        """Format labels as Prometheus label string."""
        if not labels:
            return ""

        parts = [f'{k}="{v}"' for k, v in sorted(labels.items())]
        return "{" + ",".join(parts) + "}"

    def reset(self) -> None:
        """Reset all metrics. Useful for testing."""
        self._metrics.clear()
        self._setup_metrics()


# Global metrics instance
metrics = MetricsRegistry()
