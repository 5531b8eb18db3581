"""Self-monitoring metrics exposed on /metrics using prometheus_client."""
from typing import Callable, List
from prometheus_client import Counter, Gauge, Histogram, CollectorRegistry


def exponential_buckets_range(minimum: float, maximum: float, count: int) -> List[float]:
    """Return ``count`` buckets growing exponentially from minimum to maximum."""
    if count < 2:
        raise ValueError("count must be at least 2")
    if minimum <= 0:
        raise ValueError("minimum must be positive")
    factor = (maximum / minimum) ** (1.0 / (count - 1))
    return [minimum * factor ** i for i in range(count)]


class SelfMetrics:
    """Counters and histograms describing the collector itself."""

    def __init__(self, registry=None, prefix=""):
        # Use a custom registry to avoid exporting default Python/process metrics
        if registry is None:
            registry = CollectorRegistry()
        self.registry = registry

        self.writes_total = Counter(
            f"{prefix}prometheus_writes_total",
            "Total number of metric write attempts by status",
            ["status"],
            registry=registry
        )

        self.refresh_latency_seconds = Histogram(
            f"{prefix}refresh_latencies_seconds",
            "Latencies of refresh attempts.",
            ["status"],
            buckets=exponential_buckets_range(1, 120, 5),
            registry=registry
        )

        self.last_success_time = Gauge(
            f"{prefix}last_success_time_seconds",
            "The last time the collector successfully refreshed data.",
            registry=registry
        )

    def record_write(self, status: str):
        """Record one write decision: success, skipped or error."""
        self.writes_total.labels(status=status).inc()

    def record_refresh(self, status: str, duration: float):
        """Record refresh cycle latency."""
        self.refresh_latency_seconds.labels(status=status).observe(duration)

    def track_last_success(self, fn: Callable[[], float]):
        """Report the last success time lazily at scrape time."""
        self.last_success_time.set_function(fn)
