"""
Queue handles and queue definitions.

A ``QueueHandle`` is the producer-side API bound to one named queue. Its
default options differ per queue to reflect the cost of failure: user-facing
notifications retry more often and sooner than source checks.
"""

import json
import logging
from collections.abc import Mapping
from typing import Any

from jobengine.constants import (
    CHECK_SOURCE_QUEUE,
    NOTIFICATION_QUEUE,
    SPAN_ENQUEUE_JOB,
    BackoffType,
)
from jobengine.errors import EnqueueError, PayloadValidationError, StoreError
from jobengine.observability.metrics import get_metrics
from jobengine.observability.tracing import get_tracer
from jobengine.store.base import QueueStore
from jobengine.types.job import (
    BackoffPolicy,
    EnqueueOptions,
    JobHandle,
    JobOptions,
    RateLimit,
    RetentionPolicy,
    RetentionRule,
    WorkerConfig,
)

logger = logging.getLogger(__name__)

# Keep the last 100 completed jobs for an hour, the last 500 failures for a day
DEFAULT_RETENTION = RetentionPolicy(
    on_complete=RetentionRule(count=100, age_seconds=3600),
    on_fail=RetentionRule(count=500, age_seconds=86400),
)

QUEUE_OPTIONS: dict[str, JobOptions] = {
    CHECK_SOURCE_QUEUE: JobOptions(
        attempts=3,
        backoff=BackoffPolicy(type=BackoffType.EXPONENTIAL, delay_ms=5000),
        retention=DEFAULT_RETENTION,
    ),
    NOTIFICATION_QUEUE: JobOptions(
        attempts=5,
        backoff=BackoffPolicy(type=BackoffType.EXPONENTIAL, delay_ms=1000),
        retention=DEFAULT_RETENTION,
    ),
}

WORKER_CONFIGS: dict[str, WorkerConfig] = {
    CHECK_SOURCE_QUEUE: WorkerConfig(
        queue_name=CHECK_SOURCE_QUEUE,
        concurrency=5,
        rate_limit=RateLimit(max=10, window_ms=1000),
    ),
    NOTIFICATION_QUEUE: WorkerConfig(
        queue_name=NOTIFICATION_QUEUE,
        concurrency=10,
    ),
}


def validate_payload(payload: Any) -> dict[str, Any]:
    """
    Ensure a payload can be stored.

    Args:
        payload: The candidate payload.

    Returns:
        The payload as a plain dict.

    Raises:
        PayloadValidationError: If the payload is not a JSON-serializable mapping.
    """
    if not isinstance(payload, Mapping):
        raise PayloadValidationError(
            f"Payload must be a mapping, got {type(payload).__name__}"
        )
    try:
        json.dumps(payload, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise PayloadValidationError(f"Payload is not JSON-serializable: {e}") from e
    return dict(payload)


class QueueHandle:
    """
    Typed enqueue API bound to one named queue.

    Registers the queue's retention policy with the store on creation; the
    store evicts finished jobs asynchronously.
    """

    def __init__(
        self,
        name: str,
        store: QueueStore,
        default_options: JobOptions | None = None,
    ):
        """
        Initialize the handle.

        Args:
            name: The queue name.
            store: The durable store jobs are added to.
            default_options: Queue-level job options.
        """
        self.name = name
        self.default_options = default_options or JobOptions()
        self._store = store
        self._metrics = get_metrics()

        store.set_retention(name, self.default_options.retention)

    def resolve_options(self, options: EnqueueOptions | None = None) -> JobOptions:
        """Merge per-job overrides over the queue defaults."""
        if options is None:
            return self.default_options

        overrides: dict[str, Any] = {}
        if options.attempts is not None:
            overrides["attempts"] = options.attempts
        if options.backoff is not None:
            overrides["backoff"] = options.backoff
        return self.default_options.model_copy(update=overrides)

    async def enqueue(
        self,
        payload: Mapping[str, Any],
        options: EnqueueOptions | None = None,
    ) -> JobHandle:
        """
        Add a job to this queue.

        Args:
            payload: JSON-serializable job data.
            options: Optional per-job attempts, backoff, and delay overrides.

        Returns:
            Handle of the stored job.

        Raises:
            PayloadValidationError: If the payload cannot be serialized.
            EnqueueError: If the store rejected the job or is unreachable.
        """
        data = validate_payload(payload)
        job_options = self.resolve_options(options)
        delay_ms = options.delay_ms if options is not None else 0

        with get_tracer().start_as_current_span(SPAN_ENQUEUE_JOB) as span:
            span.set_attribute("queue", self.name)
            try:
                job = await self._store.add(
                    self.name,
                    data,
                    job_options,
                    delay_ms=delay_ms,
                )
            except StoreError as e:
                logger.error(
                    "Enqueue failed",
                    extra={"queue": self.name, "error": str(e)}
                )
                raise EnqueueError(self.name, str(e)) from e

        self._metrics.record_job_enqueued(self.name)
        logger.debug(
            "Job enqueued",
            extra={"job_id": str(job.id), "queue": self.name, "delay_ms": delay_ms}
        )

        return JobHandle(id=job.id, queue_name=self.name, enqueued_at=job.enqueued_at)


def create_queues(store: QueueStore) -> dict[str, QueueHandle]:
    """
    Create handles for every defined queue.

    Args:
        store: The store shared by all handles.

    Returns:
        Handles keyed by queue name.
    """
    return {
        name: QueueHandle(name, store, options)
        for name, options in QUEUE_OPTIONS.items()
    }
