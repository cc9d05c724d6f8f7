"""
Lease reaper and retention sweeper.

The reaper runs periodically to find jobs with expired leases and return
them to the queue, and to evict finished jobs beyond their queue's retention
policy. This handles worker crashes and keeps the store bounded.
"""

import asyncio
import logging

from jobengine.config import get_settings
from jobengine.observability.metrics import get_metrics
from jobengine.store.base import QueueStore

logger = logging.getLogger(__name__)


class Reaper:
    """
    Periodic store maintenance.

    Each tick:
    1. Returns ACTIVE jobs with an expired lease to WAITING
    2. Applies the registered retention policies
    3. Records metrics for monitoring
    """

    def __init__(self, store: QueueStore, interval_seconds: float | None = None):
        """
        Initialize the reaper.

        Args:
            store: The store to maintain.
            interval_seconds: Seconds between reaper runs.
        """
        settings = get_settings()
        self.interval = interval_seconds or settings.reaper_interval_seconds
        self._store = store
        self._task: asyncio.Task | None = None
        self._metrics = get_metrics()

    @property
    def is_running(self) -> bool:
        return self._task is not None

    async def start(self) -> None:
        """Start the reaper loop in the background."""
        if self._task is not None:
            return
        logger.info(f"Reaper starting with interval {self.interval}s")
        self._task = asyncio.create_task(self._loop(), name="reaper")

    async def stop(self) -> None:
        """Stop the reaper. Idempotent."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Reaper stopped")

    async def _loop(self) -> None:
        while True:
            try:
                await self.run_once()
            except Exception as e:
                logger.exception(f"Error in reaper loop: {e}")

            await asyncio.sleep(self.interval)

    async def run_once(self) -> tuple[int, int]:
        """
        Run one maintenance pass.

        Returns:
            Tuple of (recovered leases, evicted jobs).
        """
        recovered = await self._store.recover_expired_leases()
        if recovered > 0:
            logger.info(f"Recovered {recovered} expired leases")
            self._metrics.record_lease_expired(recovered)

        evicted = await self._store.apply_retention()
        if evicted > 0:
            logger.info(f"Evicted {evicted} finished jobs")
            self._metrics.record_jobs_evicted(evicted)

        return recovered, evicted
