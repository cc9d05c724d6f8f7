"""
Event type definitions for worker lifecycle notifications.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel

from jobengine.constants import EVENT_JOB_COMPLETED, EVENT_JOB_FAILED, JobState
from jobengine.types.job import utcnow


class JobEvent(BaseModel):
    """
    Event emitted when a worker finishes an attempt.
    Consumed by logging and metrics subscribers.
    """

    event_type: str
    job_id: UUID
    queue_name: str
    state: JobState
    attempts_made: int
    timestamp: datetime
    error: str | None = None
    will_retry: bool = False
    duration_seconds: float | None = None

    @classmethod
    def job_completed(
        cls,
        job_id: UUID,
        queue_name: str,
        attempts_made: int,
        duration_seconds: float | None = None,
    ) -> "JobEvent":
        """Create a job completed event."""
        return cls(
            event_type=EVENT_JOB_COMPLETED,
            job_id=job_id,
            queue_name=queue_name,
            state=JobState.COMPLETED,
            attempts_made=attempts_made,
            timestamp=utcnow(),
            duration_seconds=duration_seconds,
        )

    @classmethod
    def job_failed(
        cls,
        job_id: UUID,
        queue_name: str,
        error: str,
        attempts_made: int,
        will_retry: bool,
        duration_seconds: float | None = None,
    ) -> "JobEvent":
        """Create a job failed event."""
        return cls(
            event_type=EVENT_JOB_FAILED,
            job_id=job_id,
            queue_name=queue_name,
            state=JobState.WAITING if will_retry else JobState.FAILED,
            attempts_made=attempts_made,
            timestamp=utcnow(),
            error=error,
            will_retry=will_retry,
            duration_seconds=duration_seconds,
        )
