"""
In-process queue store.

Keeps every job in a dictionary guarded by an ``asyncio.Lock``. Semantics
match the PostgreSQL store (claim-and-lock, lease expiry, backoff re-queue,
retention), but nothing survives a restart. Suitable for development and
tests.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

from jobengine.constants import JobState
from jobengine.errors import StoreUnavailableError
from jobengine.store.base import QueueStore
from jobengine.types.job import JobOptions, JobRecord, utcnow

logger = logging.getLogger(__name__)


class MemoryStore(QueueStore):
    """In-memory implementation of ``QueueStore``."""

    def __init__(
        self,
        clock: Callable[[], datetime] = utcnow,
        backoff_max_delay_ms: int | None = None,
    ):
        """
        Initialize the store.

        Args:
            clock: Source of "now"; tests inject a controllable clock.
            backoff_max_delay_ms: Cap on retry delays.
        """
        super().__init__(backoff_max_delay_ms=backoff_max_delay_ms)
        self._clock = clock
        self._jobs: dict[UUID, JobRecord] = {}
        self._seq: dict[UUID, int] = {}
        self._counter = 0
        self._lock = asyncio.Lock()
        self.closed = False

    def _check_open(self) -> None:
        if self.closed:
            raise StoreUnavailableError("Store connection is closed")

    async def ping(self) -> None:
        self._check_open()

    async def add(
        self,
        queue_name: str,
        payload: dict[str, Any],
        options: JobOptions,
        delay_ms: int = 0,
    ) -> JobRecord:
        async with self._lock:
            self._check_open()
            now = self._clock()
            job = JobRecord(
                id=uuid4(),
                queue_name=queue_name,
                payload=payload,
                max_attempts=options.attempts,
                backoff=options.backoff,
                enqueued_at=now,
                run_at=now + timedelta(milliseconds=delay_ms),
            )
            self._jobs[job.id] = job
            self._counter += 1
            self._seq[job.id] = self._counter
            return replace(job)

    async def claim(
        self,
        queue_name: str,
        worker_id: str,
        lease_seconds: float,
    ) -> JobRecord | None:
        async with self._lock:
            self._check_open()
            now = self._clock()
            candidates = [
                job
                for job in self._jobs.values()
                if job.queue_name == queue_name
                and job.state == JobState.WAITING
                and job.run_at <= now
            ]
            if not candidates:
                return None

            job = min(candidates, key=lambda j: (j.run_at, self._seq[j.id]))
            job.state = JobState.ACTIVE
            job.lease_owner = worker_id
            job.lease_expires_at = now + timedelta(seconds=lease_seconds)
            return replace(job)

    def _leased(self, job_id: UUID, worker_id: str) -> JobRecord | None:
        job = self._jobs.get(job_id)
        if job is None or job.state != JobState.ACTIVE or job.lease_owner != worker_id:
            logger.warning(
                "Worker doesn't own job lease",
                extra={"job_id": str(job_id), "worker_id": worker_id},
            )
            return None
        return job

    async def complete(self, job_id: UUID, worker_id: str) -> JobRecord | None:
        async with self._lock:
            self._check_open()
            job = self._leased(job_id, worker_id)
            if job is None:
                return None

            job.attempts_made += 1
            job.state = JobState.COMPLETED
            job.finished_at = self._clock()
            job.lease_owner = None
            job.lease_expires_at = None
            return replace(job)

    async def fail(
        self,
        job_id: UUID,
        worker_id: str,
        error: str,
    ) -> JobRecord | None:
        async with self._lock:
            self._check_open()
            job = self._leased(job_id, worker_id)
            if job is None:
                return None

            now = self._clock()
            job.attempts_made += 1
            job.last_error = error
            job.lease_owner = None
            job.lease_expires_at = None

            if job.is_retryable:
                delay_ms = job.backoff.compute_delay_ms(
                    job.attempts_made, self.backoff_max_delay_ms
                )
                job.state = JobState.WAITING
                job.run_at = now + timedelta(milliseconds=delay_ms)
            else:
                job.state = JobState.FAILED
                job.finished_at = now
            return replace(job)

    async def extend_lease(
        self,
        job_id: UUID,
        worker_id: str,
        lease_seconds: float,
    ) -> bool:
        async with self._lock:
            self._check_open()
            job = self._jobs.get(job_id)
            if job is None or job.state != JobState.ACTIVE or job.lease_owner != worker_id:
                return False
            job.lease_expires_at = self._clock() + timedelta(seconds=lease_seconds)
            return True

    async def recover_expired_leases(self) -> int:
        async with self._lock:
            self._check_open()
            now = self._clock()
            count = 0
            for job in self._jobs.values():
                if (
                    job.state == JobState.ACTIVE
                    and job.lease_expires_at is not None
                    and job.lease_expires_at < now
                ):
                    job.state = JobState.WAITING
                    job.lease_owner = None
                    job.lease_expires_at = None
                    count += 1
            return count

    async def evict(
        self,
        queue_name: str,
        state: JobState,
        max_count: int | None,
        max_age_seconds: int | None,
    ) -> int:
        async with self._lock:
            self._check_open()
            finished = sorted(
                (
                    job
                    for job in self._jobs.values()
                    if job.queue_name == queue_name and job.state == state
                ),
                key=lambda j: j.finished_at,
                reverse=True,
            )
            doomed: list[JobRecord] = []
            if max_age_seconds is not None:
                cutoff = self._clock() - timedelta(seconds=max_age_seconds)
                doomed.extend(job for job in finished if job.finished_at < cutoff)
                finished = [job for job in finished if job.finished_at >= cutoff]
            if max_count is not None:
                doomed.extend(finished[max_count:])

            for job in doomed:
                del self._jobs[job.id]
                del self._seq[job.id]
            return len(doomed)

    async def get_job(self, job_id: UUID) -> JobRecord | None:
        async with self._lock:
            job = self._jobs.get(job_id)
            return replace(job) if job is not None else None

    async def get_job_counts(self, queue_name: str) -> dict[str, int]:
        async with self._lock:
            counts = {state.value: 0 for state in JobState}
            for job in self._jobs.values():
                if job.queue_name == queue_name:
                    counts[job.state.value] += 1
            return counts

    async def close(self) -> None:
        self.closed = True
        logger.info("Memory store closed")

    async def force_close(self) -> None:
        self.closed = True
