"""
Job-related type definitions.
"""

import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from jobengine.constants import (
    DEFAULT_BACKOFF_MAX_DELAY_MS,
    BackoffType,
    JobState,
)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class BackoffPolicy(BaseModel):
    """
    Delay applied before a failed job is attempted again.

    Exponential policies double the base delay after every failed attempt:
    ``delay_ms * 2 ** (attempts_made - 1)``. Both types are capped.
    """

    model_config = ConfigDict(frozen=True)

    type: BackoffType = BackoffType.EXPONENTIAL
    delay_ms: int = Field(default=1000, ge=0)
    jitter: float = Field(default=0.0, ge=0.0, le=1.0)

    def compute_delay_ms(
        self,
        attempts_made: int,
        max_delay_ms: int = DEFAULT_BACKOFF_MAX_DELAY_MS,
    ) -> int:
        """
        Compute the delay before the next attempt.

        Args:
            attempts_made: Attempts finished so far, including the one that
                just failed (1-based).
            max_delay_ms: Upper bound on the returned delay.

        Returns:
            Delay in milliseconds.
        """
        attempts_made = max(1, attempts_made)
        if self.type == BackoffType.FIXED:
            delay = self.delay_ms
        else:
            delay = self.delay_ms * 2 ** (attempts_made - 1)
        delay = min(delay, max_delay_ms)

        if self.jitter:
            delay -= random.uniform(0, delay * self.jitter)

        return int(delay)


class RetentionRule(BaseModel):
    """Count and age ceilings for finished jobs in one state."""

    model_config = ConfigDict(frozen=True)

    count: int | None = Field(default=None, ge=0)
    age_seconds: int | None = Field(default=None, ge=0)


class RetentionPolicy(BaseModel):
    """Separate retention ceilings for completed and failed jobs."""

    model_config = ConfigDict(frozen=True)

    on_complete: RetentionRule = RetentionRule()
    on_fail: RetentionRule = RetentionRule()

    def rule_for(self, state: JobState) -> RetentionRule:
        """Get the rule that applies to jobs finished in ``state``."""
        if state == JobState.COMPLETED:
            return self.on_complete
        return self.on_fail


class JobOptions(BaseModel):
    """
    Default options attached to a queue.
    Immutable once the queue handle is created.
    """

    model_config = ConfigDict(frozen=True)

    attempts: int = Field(default=3, ge=1)
    backoff: BackoffPolicy = BackoffPolicy()
    retention: RetentionPolicy = RetentionPolicy()


class EnqueueOptions(BaseModel):
    """Per-job overrides accepted by ``QueueHandle.enqueue``."""

    model_config = ConfigDict(frozen=True)

    attempts: int | None = Field(default=None, ge=1)
    backoff: BackoffPolicy | None = None
    delay_ms: int = Field(default=0, ge=0)


class RateLimit(BaseModel):
    """At most ``max`` job starts within any window of ``window_ms``."""

    model_config = ConfigDict(frozen=True)

    max: int = Field(ge=1)
    window_ms: int = Field(ge=1)

    @property
    def window_seconds(self) -> float:
        return self.window_ms / 1000


class WorkerConfig(BaseModel):
    """Consumption limits for one worker engine."""

    model_config = ConfigDict(frozen=True)

    queue_name: str
    concurrency: int = Field(default=1, ge=1)
    rate_limit: RateLimit | None = None
    timeout_seconds: float | None = Field(default=None, gt=0)


class JobResult(BaseModel):
    """
    Result of job execution.
    Handlers may return one to report an explicit failure.
    """

    success: bool
    output: dict[str, Any] | None = None
    error: str | None = None
    duration_ms: float | None = None


@dataclass
class JobRecord:
    """
    A job as held by the durable queue store.

    ``attempts_made`` counts finished attempts. A job stays retryable while
    ``attempts_made < max_attempts``.
    """

    id: UUID
    queue_name: str
    payload: dict[str, Any]
    max_attempts: int
    backoff: BackoffPolicy
    enqueued_at: datetime
    run_at: datetime
    state: JobState = JobState.WAITING
    attempts_made: int = 0
    lease_owner: str | None = None
    lease_expires_at: datetime | None = None
    finished_at: datetime | None = None
    last_error: str | None = None

    @property
    def is_retryable(self) -> bool:
        """Check if the job has attempts left."""
        return self.attempts_made < self.max_attempts

    @property
    def is_finished(self) -> bool:
        return self.state in (JobState.COMPLETED, JobState.FAILED)


@dataclass(frozen=True)
class JobHandle:
    """Reference returned to producers after a successful enqueue."""

    id: UUID
    queue_name: str
    enqueued_at: datetime


@dataclass
class JobContext:
    """
    Context passed to job handlers during execution.
    Contains job metadata and the payload.
    """

    job_id: UUID
    queue_name: str
    payload: dict[str, Any]
    attempt: int
    max_attempts: int
    worker_id: str
    lease_expires_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_last_attempt(self) -> bool:
        """Check if this is the last retry attempt."""
        return self.attempt >= self.max_attempts

    @property
    def remaining_attempts(self) -> int:
        """Get remaining retry attempts."""
        return max(0, self.max_attempts - self.attempt)
