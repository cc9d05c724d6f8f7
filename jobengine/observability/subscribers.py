"""
Logging and metrics subscribers for worker events.
"""

import logging

from jobengine.constants import EVENT_JOB_COMPLETED, EVENT_JOB_FAILED
from jobengine.events import EventEmitter
from jobengine.observability.metrics import MetricsCollector, get_metrics
from jobengine.types.events import JobEvent

logger = logging.getLogger(__name__)


def log_job_event(event: JobEvent) -> None:
    """Log a worker event for operators."""
    if event.event_type == EVENT_JOB_COMPLETED:
        logger.info(
            "Job completed",
            extra={
                "job_id": str(event.job_id),
                "queue": event.queue_name,
                "attempts_made": event.attempts_made,
            }
        )
        return

    log = logger.warning if event.will_retry else logger.error
    log(
        "Job failed",
        extra={
            "job_id": str(event.job_id),
            "queue": event.queue_name,
            "error": event.error,
            "attempts_made": event.attempts_made,
            "will_retry": event.will_retry,
        }
    )


def attach_observers(
    events: EventEmitter,
    metrics: MetricsCollector | None = None,
) -> None:
    """
    Subscribe logging and metrics to a worker's event stream.

    Args:
        events: The worker's emitter.
        metrics: Collector to record into. Defaults to the global one.
    """
    metrics = metrics or get_metrics()

    def record(event: JobEvent) -> None:
        if event.event_type == EVENT_JOB_COMPLETED:
            status = "completed"
        elif event.will_retry:
            status = "retrying"
        else:
            status = "failed"
        metrics.record_job_finished(
            queue=event.queue_name,
            status=status,
            duration_seconds=event.duration_seconds,
        )

    for event_type in (EVENT_JOB_COMPLETED, EVENT_JOB_FAILED):
        events.on(event_type, log_job_event)
        events.on(event_type, record)
