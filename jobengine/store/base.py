"""
Durable queue store contract.

The worker engine, queue handles, and reaper only talk to a store through this
interface. Implementations must make ``claim`` atomic so that a job is active
in at most one worker, and must support lease expiry so that a crashed
worker's jobs are eventually reclaimed.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any
from uuid import UUID

from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    stop_after_attempt,
    wait_exponential,
)

from jobengine.config import get_settings
from jobengine.constants import JobState
from jobengine.errors import StoreConnectionError
from jobengine.types.job import JobOptions, JobRecord, RetentionPolicy

logger = logging.getLogger(__name__)


async def connect_with_retry(
    probe: Callable[[], Awaitable[Any]],
    max_attempts: int,
    backoff_base_seconds: float,
    backoff_max_seconds: float,
    sleep: Callable[[float], Awaitable[None]] | None = None,
) -> None:
    """
    Run ``probe`` until it succeeds, backing off exponentially between tries.

    Args:
        probe: Coroutine factory that raises while the store is unreachable.
        max_attempts: Attempts before giving up.
        backoff_base_seconds: Delay multiplier for the exponential wait.
        backoff_max_seconds: Cap on a single wait.
        sleep: Optional sleep replacement.

    Raises:
        StoreConnectionError: If every attempt failed.
    """
    retrying_kwargs: dict[str, Any] = {
        "stop": stop_after_attempt(max_attempts),
        "wait": wait_exponential(
            multiplier=backoff_base_seconds,
            max=backoff_max_seconds,
        ),
        "before_sleep": before_sleep_log(logger, logging.WARNING),
    }
    if sleep is not None:
        retrying_kwargs["sleep"] = sleep

    try:
        async for attempt in AsyncRetrying(**retrying_kwargs):
            with attempt:
                await probe()
    except RetryError as e:
        last_error = e.last_attempt.exception()
        logger.error(
            f"Store unreachable after {max_attempts} attempts. Giving up.",
            extra={"error": str(last_error)},
        )
        raise StoreConnectionError(
            f"Store unreachable after {max_attempts} attempts: {last_error}",
            attempts=max_attempts,
        ) from last_error


class QueueStore(ABC):
    """
    Abstract durable queue store.

    Retention policies are registered per queue and applied asynchronously
    by ``apply_retention``; eviction is eventual, never immediate.
    """

    def __init__(self, backoff_max_delay_ms: int | None = None):
        settings = get_settings()
        self.backoff_max_delay_ms = (
            backoff_max_delay_ms
            if backoff_max_delay_ms is not None
            else settings.backoff_max_delay_ms
        )
        self._retention: dict[str, RetentionPolicy] = {}

    async def connect(self) -> None:
        """
        Connect to the store, retrying with capped exponential backoff.

        Raises:
            StoreConnectionError: If the store stays unreachable.
        """
        settings = get_settings()
        await connect_with_retry(
            self.ping,
            max_attempts=settings.store_connect_max_attempts,
            backoff_base_seconds=settings.store_connect_backoff_base_seconds,
            backoff_max_seconds=settings.store_connect_backoff_max_seconds,
        )
        logger.info("Store connected", extra={"store": type(self).__name__})

    def set_retention(self, queue_name: str, policy: RetentionPolicy) -> None:
        """Register the retention policy for a queue's finished jobs."""
        self._retention[queue_name] = policy

    def get_retention(self, queue_name: str) -> RetentionPolicy | None:
        return self._retention.get(queue_name)

    async def apply_retention(self) -> int:
        """
        Evict finished jobs beyond their queue's retention ceilings.

        Returns:
            Number of evicted jobs.
        """
        evicted = 0
        for queue_name, policy in list(self._retention.items()):
            for state in (JobState.COMPLETED, JobState.FAILED):
                rule = policy.rule_for(state)
                if rule.count is None and rule.age_seconds is None:
                    continue
                evicted += await self.evict(
                    queue_name,
                    state,
                    max_count=rule.count,
                    max_age_seconds=rule.age_seconds,
                )
        return evicted

    @abstractmethod
    async def ping(self) -> None:
        """Raise if the store is unreachable."""

    @abstractmethod
    async def add(
        self,
        queue_name: str,
        payload: dict[str, Any],
        options: JobOptions,
        delay_ms: int = 0,
    ) -> JobRecord:
        """Add a waiting job."""

    @abstractmethod
    async def claim(
        self,
        queue_name: str,
        worker_id: str,
        lease_seconds: float,
    ) -> JobRecord | None:
        """Atomically claim the next claimable job and lease it to a worker."""

    @abstractmethod
    async def complete(self, job_id: UUID, worker_id: str) -> JobRecord | None:
        """Mark a leased job completed. Returns None if the lease was lost."""

    @abstractmethod
    async def fail(
        self,
        job_id: UUID,
        worker_id: str,
        error: str,
    ) -> JobRecord | None:
        """
        Record a failed attempt.

        Re-queues the job after its backoff delay while attempts remain,
        otherwise marks it failed. Returns None if the lease was lost.
        """

    @abstractmethod
    async def extend_lease(
        self,
        job_id: UUID,
        worker_id: str,
        lease_seconds: float,
    ) -> bool:
        """Extend a held lease (heartbeat)."""

    @abstractmethod
    async def recover_expired_leases(self) -> int:
        """Return active jobs with expired leases to the waiting state."""

    @abstractmethod
    async def evict(
        self,
        queue_name: str,
        state: JobState,
        max_count: int | None,
        max_age_seconds: int | None,
    ) -> int:
        """Delete finished jobs in ``state`` beyond the given ceilings."""

    @abstractmethod
    async def get_job(self, job_id: UUID) -> JobRecord | None:
        """Get a job by ID."""

    @abstractmethod
    async def get_job_counts(self, queue_name: str) -> dict[str, int]:
        """Get job counts by state for a queue."""

    @abstractmethod
    async def close(self) -> None:
        """Close the store connection, flushing pending work."""

    @abstractmethod
    async def force_close(self) -> None:
        """Drop the store connection without waiting."""
