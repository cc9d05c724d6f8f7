"""
Periodic scheduler loop.

Invokes an application-supplied production routine once at startup and then
on a fixed cadence. A failing cycle is logged and isolated; it never stops
later cycles.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import ClassVar

from jobengine.config import get_settings
from jobengine.constants import SPAN_SCHEDULER_CYCLE
from jobengine.observability.metrics import get_metrics
from jobengine.observability.tracing import get_tracer

logger = logging.getLogger(__name__)

ProductionRoutine = Callable[[], Awaitable[None]]


class SchedulerLoop:
    """
    Single timer-driven producer of new work.

    Only one loop may run per process. Cycles are fixed-rate: firings are
    aligned to the start time plus whole intervals. Cycles never overlap; a
    firing that comes due while the previous cycle is still running is
    skipped and the loop resumes on the next aligned firing.
    """

    _active: ClassVar["SchedulerLoop | None"] = None

    def __init__(
        self,
        routine: ProductionRoutine,
        interval_seconds: float | None = None,
    ):
        """
        Initialize the scheduler loop.

        Args:
            routine: Coroutine function that enqueues work.
            interval_seconds: Seconds between cycles.
        """
        settings = get_settings()
        self.routine = routine
        self.interval = interval_seconds or settings.scheduler_interval_seconds

        self._running = False
        self._in_cycle = False
        self._idle = asyncio.Event()
        self._idle.set()
        self._task: asyncio.Task | None = None
        self._cycles = 0
        self._metrics = get_metrics()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def cycle_count(self) -> int:
        """Number of cycles started so far."""
        return self._cycles

    async def start(self) -> None:
        """
        Run the routine once, then arm the repeating timer.

        Raises:
            RuntimeError: If this or another loop is already running.
        """
        active = SchedulerLoop._active
        if active is not None:
            if active is self:
                raise RuntimeError("Scheduler loop is already running")
            raise RuntimeError("A scheduler loop is already running in this process")

        SchedulerLoop._active = self
        self._running = True
        logger.info(f"Scheduler starting with interval {self.interval}s")

        await self.run_cycle()

        if self._running:
            self._task = asyncio.create_task(self._timer(), name="scheduler")

    async def stop(self) -> None:
        """
        Cancel the timer and wait for a cycle already in progress to finish,
        including the startup cycle run by ``start``.

        Idempotent: safe to call when already stopped or never started.
        """
        self._running = False
        if SchedulerLoop._active is self:
            SchedulerLoop._active = None

        task, self._task = self._task, None
        if task is not None:
            if not self._in_cycle:
                task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if self._in_cycle:
            logger.info("Waiting for scheduler cycle to finish")
        await self._idle.wait()
        logger.info("Scheduler stopped")

    async def run_cycle(self) -> bool:
        """
        Invoke the production routine once, isolating its failures.

        Returns:
            True if the routine succeeded.
        """
        self._cycles += 1
        cycle = self._cycles
        self._in_cycle = True
        self._idle.clear()
        try:
            with get_tracer().start_as_current_span(SPAN_SCHEDULER_CYCLE) as span:
                span.set_attribute("cycle", cycle)
                await self.routine()
        except Exception as e:
            logger.exception(
                f"Error in scheduler cycle: {e}",
                extra={"cycle": cycle}
            )
            self._metrics.record_scheduler_cycle("error")
            return False
        finally:
            self._in_cycle = False
            self._idle.set()

        self._metrics.record_scheduler_cycle("ok")
        logger.debug("Scheduler cycle finished", extra={"cycle": cycle})
        return True

    async def _timer(self) -> None:
        loop = asyncio.get_running_loop()
        next_fire = loop.time() + self.interval

        while self._running:
            await asyncio.sleep(max(0.0, next_fire - loop.time()))
            if not self._running:
                break

            await self.run_cycle()

            next_fire += self.interval
            now = loop.time()
            if next_fire <= now:
                skipped = int((now - next_fire) // self.interval) + 1
                next_fire += skipped * self.interval
                logger.warning(
                    f"Scheduler cycle overran the interval, skipped {skipped} firings"
                )
