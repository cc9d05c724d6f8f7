"""
Worker engine for executing jobs from one queue.

The worker claims jobs from the store and runs their handler as independent
asyncio tasks, bounded by two guards evaluated in sequence before every
claim: a concurrency semaphore and a start-rate limiter.
"""

import asyncio
import logging
import os
import time
from uuid import UUID

from jobengine.config import get_settings
from jobengine.constants import SPAN_EXECUTE_JOB, JobState
from jobengine.errors import HandlerNotFoundError
from jobengine.events import EventEmitter
from jobengine.observability.logging import job_log_context
from jobengine.observability.metrics import get_metrics
from jobengine.observability.tracing import get_tracer
from jobengine.store.base import QueueStore
from jobengine.types.events import JobEvent
from jobengine.types.job import JobContext, JobRecord, JobResult, WorkerConfig
from jobengine.worker.handlers import JobHandler, execute_handler, get_handler
from jobengine.worker.rate_limit import RateLimiter

logger = logging.getLogger(__name__)


class Worker:
    """
    Job worker that claims and executes jobs from a single queue.

    Features:
    - At most ``concurrency`` handlers executing at once
    - At most ``rate_limit.max`` job starts per rolling window
    - Heartbeat to extend leases for long-running jobs
    - Handler errors feed the store's retry policy and never escape
    - Graceful close: stop claiming, let in-flight handlers finish
    """

    def __init__(
        self,
        config: WorkerConfig,
        store: QueueStore,
        handler: JobHandler | None = None,
        worker_id: str | None = None,
        poll_interval: float | None = None,
        lease_seconds: float | None = None,
        heartbeat_interval: float | None = None,
        rate_limiter: RateLimiter | None = None,
    ):
        """
        Initialize the worker.

        Args:
            config: Queue name and consumption limits.
            store: The durable queue store.
            handler: Job handler. Defaults to the one registered for the queue.
            worker_id: Unique worker identifier. Defaults to hostname + PID + queue.
            poll_interval: Seconds between claims when the queue is empty.
            lease_seconds: Lease duration for claimed jobs.
            heartbeat_interval: Seconds between lease extensions.
            rate_limiter: Overrides the limiter built from ``config.rate_limit``.

        Raises:
            HandlerNotFoundError: If no handler is given or registered.
        """
        settings = get_settings()

        handler = handler or get_handler(config.queue_name)
        if handler is None:
            raise HandlerNotFoundError(
                f"No handler registered for queue: {config.queue_name}"
            )

        self.config = config
        self.queue_name = config.queue_name
        self.handler = handler
        self.worker_id = worker_id or (
            f"{settings.worker_id or os.uname().nodename}-{os.getpid()}-{config.queue_name}"
        )
        self.poll_interval = poll_interval or settings.worker_poll_interval_seconds
        self.lease_seconds = lease_seconds or settings.worker_lease_duration_seconds
        self.heartbeat_interval = (
            heartbeat_interval or settings.worker_heartbeat_interval_seconds
        )
        self.events = EventEmitter()

        self._store = store
        self._semaphore = asyncio.Semaphore(config.concurrency)
        self._limiter = rate_limiter
        if self._limiter is None and config.rate_limit is not None:
            self._limiter = RateLimiter.from_config(config.rate_limit)

        self._running = False
        self._stop_event = asyncio.Event()
        self._current_jobs: dict[UUID, asyncio.Task] = {}
        self._loop_task: asyncio.Task | None = None
        self._heartbeat_task: asyncio.Task | None = None
        self._metrics = get_metrics()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def active_count(self) -> int:
        """Number of handlers currently executing."""
        return len(self._current_jobs)

    async def start(self) -> None:
        """Start claiming jobs in the background."""
        if self._running or self._loop_task is not None:
            raise RuntimeError(f"Worker {self.worker_id} is already running")

        logger.info(
            "Worker starting",
            extra={
                "worker_id": self.worker_id,
                "queue": self.queue_name,
                "concurrency": self.config.concurrency,
                "rate_limit": (
                    self.config.rate_limit.model_dump() if self.config.rate_limit else None
                ),
            }
        )

        self._running = True
        self._stop_event.clear()
        self._loop_task = asyncio.create_task(
            self._claim_loop(), name=f"worker-{self.queue_name}"
        )
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

    async def close(self) -> None:
        """
        Stop claiming new jobs and wait for in-flight handlers to finish.

        Handlers are never cancelled. Safe to call more than once.
        """
        if self._loop_task is None and not self._current_jobs:
            self._running = False
            return

        logger.info("Worker stopping", extra={"worker_id": self.worker_id})
        self._running = False
        self._stop_event.set()

        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None

        if self._current_jobs:
            logger.info(
                f"Waiting for {len(self._current_jobs)} jobs to complete",
                extra={"worker_id": self.worker_id}
            )
            await asyncio.gather(*list(self._current_jobs.values()), return_exceptions=True)

        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            try:
                await self._heartbeat_task
            except asyncio.CancelledError:
                pass
            self._heartbeat_task = None

        logger.info("Worker stopped", extra={"worker_id": self.worker_id})

    async def _claim_loop(self) -> None:
        """
        Claim jobs while running.

        A claim happens only after a concurrency slot and a rate slot are
        both held. Unused slots are given back.
        """
        while self._running:
            await self._semaphore.acquire()
            if not self._running:
                self._semaphore.release()
                break

            try:
                job = await self._claim_next()
            except Exception as e:
                self._semaphore.release()
                logger.exception(
                    f"Error claiming job: {e}",
                    extra={"worker_id": self.worker_id}
                )
                await self._idle()
                continue

            if job is None:
                self._semaphore.release()
                await self._idle()
                continue

            self._metrics.record_job_claimed(self.queue_name)
            task = asyncio.create_task(self._execute_job(job))
            self._current_jobs[job.id] = task
            self._metrics.set_active_jobs(self.queue_name, len(self._current_jobs))
            task.add_done_callback(lambda _t, job_id=job.id: self._job_done(job_id))

    async def _claim_next(self) -> JobRecord | None:
        """Pass the rate limiter, then claim one job from the store."""
        if self._limiter is not None:
            await self._limiter.acquire()
            if not self._running:
                self._limiter.refund()
                return None

        try:
            job = await self._store.claim(
                self.queue_name,
                self.worker_id,
                self.lease_seconds,
            )
        except Exception:
            if self._limiter is not None:
                self._limiter.refund()
            raise

        if self._limiter is not None:
            if job is None:
                self._limiter.refund()
            else:
                # Count the start from when the handler can run, not from before the claim
                self._limiter.restamp()
        return job

    async def _idle(self) -> None:
        """Sleep for the poll interval, waking early on close."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), self.poll_interval)
        except asyncio.TimeoutError:
            pass

    def _job_done(self, job_id: UUID) -> None:
        self._current_jobs.pop(job_id, None)
        self._semaphore.release()
        self._metrics.set_active_jobs(self.queue_name, len(self._current_jobs))

    async def _execute_job(self, job: JobRecord) -> None:
        """Run one attempt with the job bound to every log record it produces."""
        with job_log_context(
            job_id=str(job.id),
            queue=self.queue_name,
            attempt=job.attempts_made + 1,
        ):
            await self._run_attempt(job)

    async def _run_attempt(self, job: JobRecord) -> None:
        """
        Execute a single claimed job.

        Handles the full attempt:
        1. Invoke the handler
        2. Report completion or failure to the store
        3. Emit a completed or failed event

        Args:
            job: The claimed job.
        """
        context = JobContext(
            job_id=job.id,
            queue_name=job.queue_name,
            payload=job.payload,
            attempt=job.attempts_made + 1,
            max_attempts=job.max_attempts,
            worker_id=self.worker_id,
            lease_expires_at=job.lease_expires_at,
        )

        logger.debug(
            "Executing job",
            extra={"job_id": str(job.id), "attempt": context.attempt}
        )

        start_time = time.monotonic()
        try:
            with get_tracer().start_as_current_span(SPAN_EXECUTE_JOB) as span:
                span.set_attribute("job_id", str(job.id))
                span.set_attribute("queue", self.queue_name)
                span.set_attribute("attempt", context.attempt)

                result = await execute_handler(
                    self.handler,
                    context,
                    timeout_seconds=self.config.timeout_seconds,
                )
        except Exception as e:
            # Counts as a failed attempt
            logger.exception(
                "Worker exception while executing job",
                extra={"job_id": str(job.id)}
            )
            result = JobResult(success=False, error=f"Worker exception: {e}")
        duration = time.monotonic() - start_time

        try:
            if result.success:
                updated = await self._store.complete(job.id, self.worker_id)
                if updated is None:
                    logger.warning(
                        "Lost lease before completion was recorded",
                        extra={"job_id": str(job.id)}
                    )
                    return
                await self.events.emit(
                    JobEvent.job_completed(
                        job_id=job.id,
                        queue_name=self.queue_name,
                        attempts_made=updated.attempts_made,
                        duration_seconds=duration,
                    )
                )
            else:
                error = result.error or "Unknown error"
                updated = await self._store.fail(job.id, self.worker_id, error)
                if updated is None:
                    logger.warning(
                        "Lost lease before failure was recorded",
                        extra={"job_id": str(job.id), "error": error}
                    )
                    return
                await self.events.emit(
                    JobEvent.job_failed(
                        job_id=job.id,
                        queue_name=self.queue_name,
                        error=error,
                        attempts_made=updated.attempts_made,
                        will_retry=updated.state == JobState.WAITING,
                        duration_seconds=duration,
                    )
                )
        except Exception as e:
            # The lease will expire and the reaper re-queues the job.
            logger.exception(
                "Failed to record job outcome",
                extra={"job_id": str(job.id), "error": str(e)}
            )

    async def _heartbeat_loop(self) -> None:
        """
        Periodically extend leases on running jobs.

        This prevents jobs from being reclaimed by the reaper
        while they're still being executed.
        """
        while True:
            try:
                await asyncio.sleep(self.heartbeat_interval)

                for job_id in list(self._current_jobs.keys()):
                    extended = await self._store.extend_lease(
                        job_id, self.worker_id, self.lease_seconds
                    )
                    if not extended:
                        logger.warning(
                            "Could not extend lease",
                            extra={"job_id": str(job_id)}
                        )

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception(f"Error in heartbeat loop: {e}")
