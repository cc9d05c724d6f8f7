"""
PostgreSQL-backed queue store.

Wraps ``JobRepository`` in one session per operation. Driver and SQL errors
are surfaced as ``StoreUnavailableError`` so callers never depend on
SQLAlchemy exception types.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from jobengine.constants import JobState
from jobengine.db.connection import close_db, get_session_context, init_db, ping_db
from jobengine.db.repository import JobRepository
from jobengine.errors import StoreUnavailableError
from jobengine.store.base import QueueStore
from jobengine.types.job import JobOptions, JobRecord, utcnow

logger = logging.getLogger(__name__)


class PostgresStore(QueueStore):
    """``QueueStore`` backed by the ``jobs`` table."""

    async def connect(self) -> None:
        await init_db()
        await super().connect()

    @asynccontextmanager
    async def _repository(self) -> AsyncGenerator[JobRepository]:
        try:
            async with get_session_context() as session:
                yield JobRepository(session)
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailableError(str(e)) from e

    async def ping(self) -> None:
        await ping_db()

    async def add(
        self,
        queue_name: str,
        payload: dict[str, Any],
        options: JobOptions,
        delay_ms: int = 0,
    ) -> JobRecord:
        run_at = utcnow() + timedelta(milliseconds=delay_ms)
        async with self._repository() as repo:
            job = await repo.create_job(
                queue_name=queue_name,
                payload=payload,
                max_attempts=options.attempts,
                backoff=options.backoff,
                run_at=run_at,
            )
            return job.to_record()

    async def claim(
        self,
        queue_name: str,
        worker_id: str,
        lease_seconds: float,
    ) -> JobRecord | None:
        async with self._repository() as repo:
            job = await repo.claim_job(queue_name, worker_id, lease_seconds)
            return job.to_record() if job is not None else None

    async def complete(self, job_id: UUID, worker_id: str) -> JobRecord | None:
        async with self._repository() as repo:
            job = await repo.complete_job(job_id, worker_id)
            return job.to_record() if job is not None else None

    async def fail(
        self,
        job_id: UUID,
        worker_id: str,
        error: str,
    ) -> JobRecord | None:
        async with self._repository() as repo:
            job = await repo.fail_job(
                job_id,
                worker_id,
                error=error,
                backoff_max_delay_ms=self.backoff_max_delay_ms,
            )
            return job.to_record() if job is not None else None

    async def extend_lease(
        self,
        job_id: UUID,
        worker_id: str,
        lease_seconds: float,
    ) -> bool:
        async with self._repository() as repo:
            return await repo.extend_lease(job_id, worker_id, lease_seconds)

    async def recover_expired_leases(self) -> int:
        async with self._repository() as repo:
            return await repo.recover_expired_leases()

    async def evict(
        self,
        queue_name: str,
        state: JobState,
        max_count: int | None,
        max_age_seconds: int | None,
    ) -> int:
        async with self._repository() as repo:
            return await repo.evict_finished(
                queue_name,
                state,
                max_count=max_count,
                max_age_seconds=max_age_seconds,
            )

    async def get_job(self, job_id: UUID) -> JobRecord | None:
        async with self._repository() as repo:
            job = await repo.get_job(job_id)
            return job.to_record() if job is not None else None

    async def get_job_counts(self, queue_name: str) -> dict[str, int]:
        async with self._repository() as repo:
            return await repo.get_job_counts(queue_name)

    async def close(self) -> None:
        await close_db()

    async def force_close(self) -> None:
        await close_db(force=True)
