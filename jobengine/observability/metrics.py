"""
Prometheus metrics collection.
"""

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    start_http_server,
)

from jobengine.constants import (
    METRIC_JOB_DURATION,
    METRIC_JOBS_ACTIVE,
    METRIC_JOBS_CLAIMED,
    METRIC_JOBS_COMPLETED,
    METRIC_JOBS_ENQUEUED,
    METRIC_JOBS_EVICTED,
    METRIC_LEASE_EXPIRED,
    METRIC_SCHEDULER_CYCLES,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the job engine.

    Collects metrics for:
    - Job enqueues, claims, and outcomes per queue
    - Job execution duration
    - In-flight handler count per queue
    - Lease recovery and retention eviction
    - Scheduler cycles
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.jobs_enqueued = Counter(
            METRIC_JOBS_ENQUEUED,
            "Total number of jobs enqueued",
            ["queue"],
            registry=self._registry,
        )

        self.jobs_claimed = Counter(
            METRIC_JOBS_CLAIMED,
            "Total number of jobs claimed by workers",
            ["queue"],
            registry=self._registry,
        )

        # status is completed, retrying, or failed
        self.jobs_completed = Counter(
            METRIC_JOBS_COMPLETED,
            "Total number of finished job attempts",
            ["queue", "status"],
            registry=self._registry,
        )

        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Job execution duration in seconds",
            ["queue", "status"],
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
            registry=self._registry,
        )

        self.jobs_active = Gauge(
            METRIC_JOBS_ACTIVE,
            "Number of handlers currently executing",
            ["queue"],
            registry=self._registry,
        )

        self.lease_expired = Counter(
            METRIC_LEASE_EXPIRED,
            "Total number of expired leases recovered",
            registry=self._registry,
        )

        self.jobs_evicted = Counter(
            METRIC_JOBS_EVICTED,
            "Total number of finished jobs evicted by retention",
            registry=self._registry,
        )

        self.scheduler_cycles = Counter(
            METRIC_SCHEDULER_CYCLES,
            "Total number of scheduler cycles",
            ["status"],
            registry=self._registry,
        )

    def record_job_enqueued(self, queue: str) -> None:
        """Record a job enqueue."""
        self.jobs_enqueued.labels(queue=queue).inc()

    def record_job_claimed(self, queue: str) -> None:
        """Record a job claim."""
        self.jobs_claimed.labels(queue=queue).inc()

    def record_job_finished(
        self,
        queue: str,
        status: str,
        duration_seconds: float | None,
    ) -> None:
        """Record the outcome of one attempt."""
        self.jobs_completed.labels(queue=queue, status=status).inc()
        if duration_seconds is not None:
            self.job_duration.labels(queue=queue, status=status).observe(
                duration_seconds
            )

    def set_active_jobs(self, queue: str, count: int) -> None:
        """Update the in-flight handler count for a queue."""
        self.jobs_active.labels(queue=queue).set(count)

    def record_lease_expired(self, count: int = 1) -> None:
        """Record recovered leases."""
        self.lease_expired.inc(count)

    def record_jobs_evicted(self, count: int) -> None:
        """Record retention evictions."""
        self.jobs_evicted.inc(count)

    def record_scheduler_cycle(self, status: str) -> None:
        """Record a scheduler cycle ("ok" or "error")."""
        self.scheduler_cycles.labels(status=status).inc()

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)


def setup_metrics(registry: CollectorRegistry | None = None) -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Args:
        registry: Optional custom registry for the first setup.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector(registry)
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics


def start_metrics_server(port: int) -> None:
    """Expose the default registry over HTTP for scraping."""
    start_http_server(port)
