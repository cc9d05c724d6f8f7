"""
Job repository for database operations.
Implements the core data access patterns for queue management.
"""

import logging
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import and_, delete, func, select, text, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from jobengine.constants import JobState
from jobengine.db.models import Job
from jobengine.types.job import BackoffPolicy, utcnow

logger = logging.getLogger(__name__)


class JobRepository:
    """
    Repository for job database operations.

    Implements atomic operations for:
    - Job submission
    - Claim-and-lease with FOR UPDATE SKIP LOCKED
    - Completion, failure, and backoff re-queue
    - Lease expiry handling and retention eviction
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            session: The async database session.
        """
        self._session = session

    async def create_job(
        self,
        queue_name: str,
        payload: dict[str, Any],
        max_attempts: int,
        backoff: BackoffPolicy,
        run_at: datetime | None = None,
    ) -> Job:
        """
        Create a new waiting job.

        Args:
            queue_name: The queue the job belongs to.
            payload: The job payload.
            max_attempts: Maximum attempts before the job fails for good.
            backoff: Retry delay policy.
            run_at: Earliest claim time. Defaults to now.

        Returns:
            The created Job.
        """
        now = utcnow()
        stmt = insert(Job).values(
            queue_name=queue_name,
            payload=payload,
            max_attempts=max_attempts,
            backoff=backoff.model_dump(mode="json"),
            state=JobState.WAITING,
            run_at=run_at or now,
            enqueued_at=now,
            updated_at=now,
        ).returning(Job)

        result = await self._session.execute(stmt)
        job = result.scalar_one()

        logger.debug(
            "Created new job",
            extra={"job_id": str(job.id), "queue": queue_name}
        )
        return job

    async def get_job(self, job_id: UUID) -> Job | None:
        """
        Get a job by ID.

        Args:
            job_id: The job UUID.

        Returns:
            The Job or None if not found.
        """
        stmt = select(Job).where(Job.id == job_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def claim_job(
        self,
        queue_name: str,
        worker_id: str,
        lease_seconds: float,
    ) -> Job | None:
        """
        Claim the next claimable job using FOR UPDATE SKIP LOCKED.

        This is the critical path for job distribution. A single UPDATE
        selects and leases the job so no two workers can claim it.

        Args:
            queue_name: The queue to claim from.
            worker_id: The worker identifier.
            lease_seconds: Lease duration.

        Returns:
            The leased Job, or None if nothing is claimable.
        """
        now = utcnow()
        lease_expires_at = now + timedelta(seconds=lease_seconds)

        sql = text("""
            UPDATE jobs
            SET
                lease_owner = :worker_id,
                lease_expires_at = :lease_expires_at,
                state = :active_state,
                updated_at = :now
            WHERE id = (
                SELECT id FROM jobs
                WHERE queue_name = :queue_name
                AND state = :waiting_state
                AND run_at <= :now
                ORDER BY run_at ASC, enqueued_at ASC
                FOR UPDATE SKIP LOCKED
                LIMIT 1
            )
            RETURNING *
        """)

        result = await self._session.execute(
            sql,
            {
                "worker_id": worker_id,
                "lease_expires_at": lease_expires_at,
                "active_state": JobState.ACTIVE.value,
                "waiting_state": JobState.WAITING.value,
                "queue_name": queue_name,
                "now": now,
            }
        )

        row = result.fetchone()
        if row is None:
            return None

        return Job(
            id=row.id,
            queue_name=row.queue_name,
            payload=row.payload,
            state=JobState(row.state),
            attempts_made=row.attempts_made,
            max_attempts=row.max_attempts,
            backoff=row.backoff,
            lease_owner=row.lease_owner,
            lease_expires_at=row.lease_expires_at,
            run_at=row.run_at,
            enqueued_at=row.enqueued_at,
            updated_at=row.updated_at,
            finished_at=row.finished_at,
            last_error=row.last_error,
        )

    async def complete_job(self, job_id: UUID, worker_id: str) -> Job | None:
        """
        Mark job as successfully completed.

        Args:
            job_id: The job UUID.
            worker_id: The worker identifier (must match lease owner).

        Returns:
            Updated Job or None if the worker no longer holds the lease.
        """
        now = utcnow()
        stmt = (
            update(Job)
            .where(
                and_(
                    Job.id == job_id,
                    Job.state == JobState.ACTIVE,
                    Job.lease_owner == worker_id,
                )
            )
            .values(
                state=JobState.COMPLETED,
                attempts_made=Job.attempts_made + 1,
                finished_at=now,
                updated_at=now,
                lease_owner=None,
                lease_expires_at=None,
            )
            .returning(Job)
        )

        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def fail_job(
        self,
        job_id: UUID,
        worker_id: str,
        error: str,
        backoff_max_delay_ms: int,
    ) -> Job | None:
        """
        Handle a failed attempt. Either re-queue after backoff or fail for good.

        Args:
            job_id: The job UUID.
            worker_id: The worker identifier.
            error: Error message.
            backoff_max_delay_ms: Cap on the retry delay.

        Returns:
            Updated Job or None if the worker no longer holds the lease.
        """
        stmt = select(Job).where(Job.id == job_id).with_for_update()
        job = (await self._session.execute(stmt)).scalar_one_or_none()
        if job is None:
            return None

        if job.state != JobState.ACTIVE or job.lease_owner != worker_id:
            logger.warning(
                "Worker doesn't own job lease",
                extra={"job_id": str(job_id), "worker_id": worker_id}
            )
            return None

        now = utcnow()
        attempts_made = job.attempts_made + 1
        values: dict[str, Any] = {
            "attempts_made": attempts_made,
            "last_error": error,
            "updated_at": now,
            "lease_owner": None,
            "lease_expires_at": None,
        }

        if attempts_made >= job.max_attempts:
            values["state"] = JobState.FAILED
            values["finished_at"] = now
            logger.warning(
                f"Job failed after {attempts_made} attempts",
                extra={"job_id": str(job_id), "error": error}
            )
        else:
            backoff = BackoffPolicy.model_validate(job.backoff or {})
            delay_ms = backoff.compute_delay_ms(attempts_made, backoff_max_delay_ms)
            values["state"] = JobState.WAITING
            values["run_at"] = now + timedelta(milliseconds=delay_ms)
            logger.info(
                "Job queued for retry",
                extra={
                    "job_id": str(job_id),
                    "attempts_made": attempts_made,
                    "delay_ms": delay_ms,
                }
            )

        update_stmt = (
            update(Job)
            .where(Job.id == job_id)
            .values(**values)
            .returning(Job)
        )

        result = await self._session.execute(update_stmt)
        return result.scalar_one_or_none()

    async def extend_lease(
        self,
        job_id: UUID,
        worker_id: str,
        lease_seconds: float,
    ) -> bool:
        """
        Extend the lease on a job (heartbeat).

        Args:
            job_id: The job UUID.
            worker_id: The worker identifier.
            lease_seconds: New lease duration from now.

        Returns:
            True if lease was extended, False otherwise.
        """
        now = utcnow()

        stmt = (
            update(Job)
            .where(
                and_(
                    Job.id == job_id,
                    Job.lease_owner == worker_id,
                    Job.state == JobState.ACTIVE,
                )
            )
            .values(
                lease_expires_at=now + timedelta(seconds=lease_seconds),
                updated_at=now,
            )
        )

        result = await self._session.execute(stmt)
        return result.rowcount > 0

    async def recover_expired_leases(self) -> int:
        """
        Recover jobs with expired leases.

        This is called by the reaper to handle worker crashes.
        ACTIVE jobs with expired leases are returned to WAITING.

        Returns:
            Number of recovered jobs.
        """
        now = utcnow()

        stmt = (
            update(Job)
            .where(
                and_(
                    Job.state == JobState.ACTIVE,
                    Job.lease_expires_at < now,
                )
            )
            .values(
                state=JobState.WAITING,
                lease_owner=None,
                lease_expires_at=None,
                updated_at=now,
            )
        )

        result = await self._session.execute(stmt)
        count = result.rowcount

        if count > 0:
            logger.info(f"Recovered {count} jobs with expired leases")

        return count

    async def evict_finished(
        self,
        queue_name: str,
        state: JobState,
        max_count: int | None,
        max_age_seconds: int | None,
    ) -> int:
        """
        Delete finished jobs beyond the retention ceilings, oldest first.

        Args:
            queue_name: The queue to sweep.
            state: COMPLETED or FAILED.
            max_count: Keep at most this many of the newest jobs.
            max_age_seconds: Delete jobs finished longer ago than this.

        Returns:
            Number of deleted jobs.
        """
        base_filter = and_(Job.queue_name == queue_name, Job.state == state)
        evicted = 0

        if max_age_seconds is not None:
            cutoff = utcnow() - timedelta(seconds=max_age_seconds)
            stmt = (
                delete(Job)
                .where(and_(base_filter, Job.finished_at < cutoff))
                .execution_options(synchronize_session=False)
            )
            evicted += (await self._session.execute(stmt)).rowcount

        if max_count is not None:
            overflow = (
                select(Job.id)
                .where(base_filter)
                .order_by(Job.finished_at.desc())
                .offset(max_count)
            )
            stmt = (
                delete(Job)
                .where(Job.id.in_(overflow))
                .execution_options(synchronize_session=False)
            )
            evicted += (await self._session.execute(stmt)).rowcount

        return evicted

    async def get_job_counts(self, queue_name: str) -> dict[str, int]:
        """
        Get job counts by state for a queue.

        Args:
            queue_name: The queue name.

        Returns:
            Dictionary of state -> count, with every state present.
        """
        stmt = (
            select(Job.state, func.count())
            .where(Job.queue_name == queue_name)
            .group_by(Job.state)
        )

        result = await self._session.execute(stmt)
        counts = {state.value: 0 for state in JobState}
        for state, count in result.all():
            counts[JobState(state).value] = count
        return counts
