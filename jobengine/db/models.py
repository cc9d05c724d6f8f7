"""
SQLAlchemy database models.
Defines the jobs table backing the PostgreSQL queue store.
"""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from jobengine.constants import JobState
from jobengine.types.job import BackoffPolicy, JobRecord


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Job(Base):
    """
    Job model representing a unit of work in a named queue.

    This is the authoritative source of truth for job state.

    Key constraints:
    - claims flip WAITING -> ACTIVE under FOR UPDATE SKIP LOCKED, so a job is
      active in at most one worker
    - lease_owner and lease_expires_at act as the visibility timeout; the
      reaper returns expired ACTIVE jobs to WAITING
    - run_at delays both first attempts and retries
    """

    __tablename__ = "jobs"

    # Primary key
    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
        nullable=False,
    )

    queue_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    # Job payload
    payload: Mapped[dict] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
    )

    state: Mapped[JobState] = mapped_column(
        Enum(JobState, name="job_state", create_constraint=True, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=JobState.WAITING,
    )

    # Retry tracking
    attempts_made: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    max_attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=3,
    )
    backoff: Mapped[dict] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
    )

    # Lease management
    lease_owner: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    lease_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Scheduling
    run_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # Timestamps
    enqueued_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
    finished_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Error tracking
    last_error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    __table_args__ = (
        # Index for efficient queue polling
        Index(
            "ix_jobs_queue_poll",
            "queue_name",
            "run_at",
            "enqueued_at",
            postgresql_where=(Column("state") == JobState.WAITING.value),
        ),
        # Index for lease expiry checks
        Index(
            "ix_jobs_lease_expiry",
            "lease_expires_at",
            postgresql_where=(Column("state") == JobState.ACTIVE.value),
        ),
        # Index for retention sweeps
        Index(
            "ix_jobs_retention",
            "queue_name",
            "state",
            "finished_at",
        ),
    )

    @property
    def is_retryable(self) -> bool:
        """Check if the job can be retried."""
        return self.attempts_made < self.max_attempts

    def to_record(self) -> JobRecord:
        """Convert the row into the store-neutral job record."""
        return JobRecord(
            id=self.id,
            queue_name=self.queue_name,
            payload=self.payload,
            max_attempts=self.max_attempts,
            backoff=BackoffPolicy.model_validate(self.backoff or {}),
            enqueued_at=self.enqueued_at,
            run_at=self.run_at,
            state=JobState(self.state),
            attempts_made=self.attempts_made,
            lease_owner=self.lease_owner,
            lease_expires_at=self.lease_expires_at,
            finished_at=self.finished_at,
            last_error=self.last_error,
        )

    def __repr__(self) -> str:
        return (
            f"Job(id={self.id}, queue={self.queue_name}, "
            f"state={self.state}, attempts={self.attempts_made}/{self.max_attempts})"
        )
