"""
In-process metrics for sell runs
Tracks call latencies, submission outcomes and error classes
"""

import time
from typing import Dict, List, Optional
from dataclasses import dataclass
from collections import defaultdict, deque
import statistics


@dataclass
class HistogramStats:
    """Statistical summary of histogram data"""
    operation: str
    count: int
    p50: float
    p95: float
    p99: float
    mean: float
    min: float
    max: float


class MetricsCollector:
    """Collects counters and latency histograms for one process"""

    def __init__(self, enable_histogram: bool = True, max_samples: int = 10000):
        """
        Initialize metrics collector

        Args:
            enable_histogram: Whether to keep latency samples
            max_samples: Samples kept per operation
        """
        self.enable_histogram = enable_histogram

        # operation -> recent latency samples (ms)
        self._latencies: Dict[str, deque] = defaultdict(lambda: deque(maxlen=max_samples))

        self._counters: Dict[str, int] = defaultdict(int)

        # (metric_name, labels_tuple) -> value
        self._labeled_counters: Dict[tuple, int] = defaultdict(int)

    def record_latency(
        self,
        operation: str,
        latency_ms: float,
        labels: Optional[Dict[str, str]] = None
    ) -> None:
        """
        Record operation latency

        Args:
            operation: Operation name (e.g., "get_route", "submit")
            latency_ms: Latency in milliseconds
            labels: Optional labels for the metric
        """
        if self.enable_histogram:
            self._latencies[operation].append(latency_ms)

        self.increment_counter(f"{operation}_count", labels=labels)

    def increment_counter(
        self,
        metric_name: str,
        value: int = 1,
        labels: Optional[Dict[str, str]] = None
    ) -> None:
        """
        Increment a counter metric

        Args:
            metric_name: Name of the counter
            value: Amount to increment (default 1)
            labels: Optional labels for the metric
        """
        if labels:
            label_key = (metric_name, tuple(sorted(labels.items())))
            self._labeled_counters[label_key] += value
        else:
            self._counters[metric_name] += value

    def get_counter(self, metric_name: str, labels: Optional[Dict[str, str]] = None) -> int:
        """Get current counter value"""
        if labels:
            label_key = (metric_name, tuple(sorted(labels.items())))
            return self._labeled_counters.get(label_key, 0)
        return self._counters.get(metric_name, 0)

    def get_histogram_stats(self, operation: str) -> Optional[HistogramStats]:
        """
        Get histogram statistics for an operation

        Returns:
            HistogramStats or None if no data
        """
        latencies = list(self._latencies.get(operation, []))

        if not latencies:
            return None

        sorted_latencies = sorted(latencies)

        return HistogramStats(
            operation=operation,
            count=len(sorted_latencies),
            p50=self._percentile(sorted_latencies, 50),
            p95=self._percentile(sorted_latencies, 95),
            p99=self._percentile(sorted_latencies, 99),
            mean=statistics.mean(sorted_latencies),
            min=sorted_latencies[0],
            max=sorted_latencies[-1]
        )

    def export_metrics(self) -> Dict:
        """Export all metrics as a JSON-serializable dict"""
        labeled = {}
        for (name, labels), value in self._labeled_counters.items():
            label_str = ",".join(f"{k}={v}" for k, v in labels)
            labeled[f"{name}{{{label_str}}}"] = value

        exported = {
            "counters": dict(self._counters),
            "labeled_counters": labeled,
            "histograms": {}
        }

        for operation in self._latencies.keys():
            stats = self.get_histogram_stats(operation)
            if stats:
                exported["histograms"][operation] = {
                    "count": stats.count,
                    "p50": stats.p50,
                    "p95": stats.p95,
                    "p99": stats.p99,
                    "mean": stats.mean,
                    "min": stats.min,
                    "max": stats.max
                }

        return exported

    def reset(self) -> None:
        """Reset all metrics (useful for testing)"""
        self._latencies.clear()
        self._counters.clear()
        self._labeled_counters.clear()

    @staticmethod
    def _percentile(sorted_data: List[float], percentile: float) -> float:
        """Calculate percentile from sorted data"""
        if not sorted_data:
            return 0.0

        if len(sorted_data) == 1:
            return sorted_data[0]

        index = (percentile / 100) * (len(sorted_data) - 1)
        lower = int(index)
        upper = lower + 1

        if upper >= len(sorted_data):
            return sorted_data[-1]

        weight = index - lower
        return sorted_data[lower] * (1 - weight) + sorted_data[upper] * weight


class LatencyTimer:
    """Context manager for measuring operation latency"""

    def __init__(self, metrics: MetricsCollector, operation: str, labels: Optional[Dict[str, str]] = None):
        self.metrics = metrics
        self.operation = operation
        self.labels = labels
        self.start_time: Optional[float] = None
        self.latency_ms: Optional[float] = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is not None:
            elapsed = time.perf_counter() - self.start_time
            self.latency_ms = elapsed * 1000
            self.metrics.record_latency(self.operation, self.latency_ms, self.labels)


_global_metrics: Optional[MetricsCollector] = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance"""
    global _global_metrics
    if _global_metrics is None:
        _global_metrics = MetricsCollector()
    return _global_metrics


def configure_metrics(enable_histogram: bool = True) -> MetricsCollector:
    """Apply settings to the global collector (module-level references stay valid)"""
    collector = get_metrics()
    collector.enable_histogram = enable_histogram
    return collector
