"""
Orderly process shutdown.

State machine: running -> draining -> disconnected -> exited.

On the first termination signal the scheduler timer stops, every worker
stops claiming and drains its in-flight handlers, and only then is the store
connection closed. Later signals are logged and ignored.
"""

import asyncio
import logging
import signal
from collections.abc import Sequence

from jobengine.constants import ShutdownState
from jobengine.scheduler.loop import SchedulerLoop
from jobengine.scheduler.reaper import Reaper
from jobengine.store.base import QueueStore
from jobengine.worker.engine import Worker

logger = logging.getLogger(__name__)

SIGNALS = (signal.SIGTERM, signal.SIGINT)


class ShutdownCoordinator:
    """Sequences a non-lossy exit for one worker process."""

    def __init__(
        self,
        store: QueueStore,
        workers: Sequence[Worker] = (),
        scheduler: SchedulerLoop | None = None,
        reaper: Reaper | None = None,
    ):
        self.store = store
        self.workers = list(workers)
        self.scheduler = scheduler
        self.reaper = reaper

        self.state = ShutdownState.RUNNING
        self.reason: str | None = None
        self._task: asyncio.Task | None = None
        self._done = asyncio.Event()
        self._installed: list[signal.Signals] = []

    def install_signal_handlers(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Route SIGTERM and SIGINT to ``request_shutdown``."""
        loop = loop or asyncio.get_running_loop()
        for sig in SIGNALS:
            try:
                loop.add_signal_handler(sig, self.request_shutdown, sig.name)
                self._installed.append(sig)
            except (NotImplementedError, RuntimeError):
                logger.warning(f"Could not install handler for {sig.name}")

    def remove_signal_handlers(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        loop = loop or asyncio.get_running_loop()
        for sig in self._installed:
            loop.remove_signal_handler(sig)
        self._installed.clear()

    def request_shutdown(self, reason: str = "requested") -> None:
        """
        Begin shutting down. Only the first call has any effect.

        Args:
            reason: What triggered the shutdown, usually a signal name.
        """
        if self.state != ShutdownState.RUNNING:
            logger.info(
                f"Received {reason}, already shutting down",
                extra={"state": self.state.value}
            )
            return

        logger.info(f"Received {reason}, shutting down gracefully")
        self.reason = reason
        self.state = ShutdownState.DRAINING
        self._task = asyncio.get_running_loop().create_task(self._shutdown())

    async def shutdown(self, reason: str = "requested") -> None:
        """Request shutdown and wait for it to finish."""
        self.request_shutdown(reason)
        await self.wait()

    async def wait(self) -> None:
        """Wait until the process may exit."""
        await self._done.wait()

    async def _shutdown(self) -> None:
        try:
            await self._drain()
            await self._disconnect()
        finally:
            self.state = ShutdownState.EXITED
            self._done.set()
            logger.info("Shutdown complete")

    async def _drain(self) -> None:
        if self.scheduler is not None:
            await self.scheduler.stop()
        if self.reaper is not None:
            await self.reaper.stop()

        results = await asyncio.gather(
            *(worker.close() for worker in self.workers),
            return_exceptions=True,
        )
        for worker, result in zip(self.workers, results):
            if isinstance(result, BaseException):
                logger.error(
                    f"Error closing worker: {result}",
                    extra={"worker_id": worker.worker_id}
                )

    async def _disconnect(self) -> None:
        try:
            await self.store.close()
        except Exception as e:
            logger.error(f"Error during store disconnect: {e}", exc_info=True)
            try:
                await self.store.force_close()
            except Exception:
                logger.exception("Forced store disconnect failed")
        self.state = ShutdownState.DISCONNECTED
        logger.info("Store disconnected")
