"""
Engine Metrics

In-process counters, gauges and timers for the hot paths: compiles,
evaluations, cache lookups, store writes and pool tasks. Metrics live in
one process-wide collector and are created on first use.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, Dict, List, Optional


logger = logging.getLogger(__name__)


class MetricType(Enum):
    """Kinds of metric the collector keeps."""
    COUNTER = "counter"
    GAUGE = "gauge"
    TIMER = "timer"


@dataclass
class MetricSummary:
    """Aggregate view over the retained samples of one metric."""
    count: int = 0
    total: float = 0.0
    low: float = 0.0
    high: float = 0.0
    mean: float = 0.0
    p50: float = 0.0
    p95: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {
            "count": self.count,
            "total": self.total,
            "low": self.low,
            "high": self.high,
            "mean": self.mean,
            "p50": self.p50,
            "p95": self.p95,
        }


def _quantile(ordered: List[float], q: float) -> float:
    position = q * (len(ordered) - 1)
    below = int(position)
    above = min(below + 1, len(ordered) - 1)
    fraction = position - below
    return ordered[below] + (ordered[above] - ordered[below]) * fraction


class Metric:
    """
    One named metric.

    Counters keep a running total; gauges and timers keep a bounded
    window of recent samples.
    """

    def __init__(self, name: str, metric_type: MetricType, description: str = "", window: int = 5000):
        self.name = name
        self.type = metric_type
        self.description = description
        self._samples: Deque[float] = deque(maxlen=window)
        self._total = 0.0
        self._lock = threading.Lock()

    def record(self, value: float) -> None:
        with self._lock:
            self._samples.append(value)

    def increment(self, amount: float = 1.0) -> None:
        if self.type is not MetricType.COUNTER:
            raise ValueError(f"Metric {self.name} is a {self.type.value}, not a counter")
        with self._lock:
            self._total += amount
            self._samples.append(amount)

    @property
    def total(self) -> float:
        """Counter total, or the latest sample for gauges and timers."""
        with self._lock:
            if self.type is MetricType.COUNTER:
                return self._total
            return self._samples[-1] if self._samples else 0.0

    def summary(self) -> MetricSummary:
        with self._lock:
            ordered = sorted(self._samples)
            total = self._total if self.type is MetricType.COUNTER else sum(ordered)
        if not ordered:
            return MetricSummary(total=total)
        return MetricSummary(
            count=len(ordered),
            total=total,
            low=ordered[0],
            high=ordered[-1],
            mean=sum(ordered) / len(ordered),
            p50=_quantile(ordered, 0.5),
            p95=_quantile(ordered, 0.95),
        )

    def reset(self) -> None:
        with self._lock:
            self._samples.clear()
            self._total = 0.0


class _Stopwatch:
    """Records the seconds spent inside a `with` block into a timer."""

    def __init__(self, metric: Metric):
        self._metric = metric
        self._started = 0.0

    def __enter__(self):
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self._metric.record(time.perf_counter() - self._started)
        return False


class MetricsCollector:
    """Thread-safe registry of named metrics."""

    def __init__(self):
        self._metrics: Dict[str, Metric] = {}
        self._lock = threading.Lock()

    def _ensure(self, name: str, metric_type: MetricType, description: str) -> Metric:
        with self._lock:
            metric = self._metrics.get(name)
            if metric is None:
                metric = self._metrics[name] = Metric(name, metric_type, description)
            return metric

    def counter(self, name: str, description: str = "") -> Metric:
        return self._ensure(name, MetricType.COUNTER, description)

    def gauge(self, name: str, description: str = "") -> Metric:
        return self._ensure(name, MetricType.GAUGE, description)

    def timer(self, name: str, description: str = "") -> Metric:
        return self._ensure(name, MetricType.TIMER, description)

    def get_metric(self, name: str) -> Optional[Metric]:
        with self._lock:
            return self._metrics.get(name)

    def increment(self, name: str, amount: float = 1.0) -> None:
        self.counter(name).increment(amount)

    def set_gauge(self, name: str, value: float) -> None:
        self.gauge(name).record(value)

    def time_operation(self, name: str) -> _Stopwatch:
        """Context manager timing a block into the named timer."""
        return _Stopwatch(self.timer(name))

    def summaries(self) -> Dict[str, MetricSummary]:
        with self._lock:
            metrics = list(self._metrics.values())
        return {metric.name: metric.summary() for metric in metrics}

    def clear_all(self) -> None:
        """Reset every metric's samples; registrations are kept."""
        with self._lock:
            metrics = list(self._metrics.values())
        for metric in metrics:
            metric.reset()
        logger.debug(f"Reset {len(metrics)} metric(s)")


_collector = MetricsCollector()


def get_metrics_collector() -> MetricsCollector:
    """Process-wide metrics collector."""
    return _collector


def time_operation(name: str) -> _Stopwatch:
    return _collector.time_operation(name)
