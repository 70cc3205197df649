"""
In-process metrics for the PumpSwap trader

Counters cover trade attempts and outcomes, poll and PnL-check errors and
transaction submissions; gauges hold the last market cap seen; histograms
keep RPC and trade latencies. Labelled series are stored under a flat key
such as ``trade_attempts{direction=buy}`` so an export shows every series.
"""

import statistics
import time
from collections import defaultdict, deque
from dataclasses import asdict, dataclass
from typing import Deque, Dict, Optional


def series_key(name: str, labels: Optional[Dict[str, str]] = None) -> str:
    """Flat key for a metric series, labels sorted by name"""
    if not labels:
        return name
    rendered = ",".join(f"{key}={value}" for key, value in sorted(labels.items()))
    return f"{name}{{{rendered}}}"


@dataclass
class HistogramStats:
    """Summary of one latency series, in milliseconds"""
    operation: str
    count: int
    p50: float
    p95: float
    p99: float
    mean: float
    min: float
    max: float

    def to_dict(self) -> dict:
        summary = asdict(self)
        summary.pop("operation")
        return summary


class MetricsCollector:
    """
    Counters, gauges and latency histograms for one process

    Usage:
        metrics = get_metrics()
        metrics.increment_counter("trade_attempts", labels={"direction": "buy"})
        with LatencyTimer(metrics, "http_rpc_call"):
            ...
        logger.info("metrics_summary", **metrics.export_metrics())
    """

    def __init__(self, enable_histogram: bool = True, max_samples: int = 10000):
        self.enable_histogram = enable_histogram
        self.max_samples = max_samples

        self._counters: Dict[str, int] = defaultdict(int)
        self._gauges: Dict[str, float] = {}
        self._samples: Dict[str, Deque[float]] = {}

    def record_latency(
        self,
        operation: str,
        latency_ms: float,
        labels: Optional[Dict[str, str]] = None
    ) -> None:
        """Add one latency sample and bump the operation's call counter"""
        if self.enable_histogram:
            if operation not in self._samples:
                self._samples[operation] = deque(maxlen=self.max_samples)
            self._samples[operation].append(latency_ms)

        self.increment_counter(f"{operation}_count", labels=labels)

    def increment_counter(
        self,
        metric_name: str,
        value: int = 1,
        labels: Optional[Dict[str, str]] = None
    ) -> None:
        self._counters[series_key(metric_name, labels)] += value

    def get_counter(self, metric_name: str, labels: Optional[Dict[str, str]] = None) -> int:
        """Value of one series; an unlabelled read never sums labelled series"""
        return self._counters.get(series_key(metric_name, labels), 0)

    def set_gauge(self, metric_name: str, value: float) -> None:
        self._gauges[metric_name] = value

    def get_gauge(self, metric_name: str) -> float:
        return self._gauges.get(metric_name, 0.0)

    def get_histogram_stats(self, operation: str) -> Optional[HistogramStats]:
        """
        Percentiles for an operation's latency samples

        Returns:
            HistogramStats, or None when nothing was recorded
        """
        samples = sorted(self._samples.get(operation, ()))
        if not samples:
            return None

        if len(samples) == 1:
            p50 = p95 = p99 = samples[0]
        else:
            cuts = statistics.quantiles(samples, n=100, method="inclusive")
            p50, p95, p99 = cuts[49], cuts[94], cuts[98]

        return HistogramStats(
            operation=operation,
            count=len(samples),
            p50=p50,
            p95=p95,
            p99=p99,
            mean=statistics.mean(samples),
            min=samples[0],
            max=samples[-1]
        )

    def export_metrics(self) -> Dict[str, dict]:
        """JSON-serializable view of every counter, gauge and histogram"""
        histograms = {}
        for operation in self._samples:
            stats = self.get_histogram_stats(operation)
            if stats is not None:
                histograms[operation] = stats.to_dict()

        return {
            "counters": dict(self._counters),
            "gauges": dict(self._gauges),
            "histograms": histograms
        }

    def reset(self) -> None:
        """Drop every series (tests reset the global collector between cases)"""
        self._counters.clear()
        self._gauges.clear()
        self._samples.clear()


class LatencyTimer:
    """Context manager recording the wall time of its block, even when it raises"""

    def __init__(self, metrics: MetricsCollector, operation: str, labels: Optional[Dict[str, str]] = None):
        self.metrics = metrics
        self.operation = operation
        self.labels = labels
        self.latency_ms: Optional[float] = None
        self._started: Optional[float] = None

    def __enter__(self):
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._started is not None:
            self.latency_ms = (time.perf_counter() - self._started) * 1000
            self.metrics.record_latency(self.operation, self.latency_ms, self.labels)


_collector: Optional[MetricsCollector] = None


def get_metrics() -> MetricsCollector:
    """Process-wide collector, created on first use"""
    global _collector
    if _collector is None:
        _collector = MetricsCollector()
    return _collector


def init_metrics(enable_histogram: bool = True) -> MetricsCollector:
    """
    Configure the process-wide collector

    Modules grab the collector at import time, so the existing instance is
    reconfigured in place rather than replaced.
    """
    collector = get_metrics()
    collector.enable_histogram = enable_histogram
    return collector
