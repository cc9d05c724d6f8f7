"""
End-to-end retry scenarios for the built-in queues.
"""

import asyncio
import time

from jobengine.constants import CHECK_SOURCE_QUEUE, NOTIFICATION_QUEUE, BackoffType, JobState
from jobengine.queues import create_queues
from jobengine.store.memory import MemoryStore
from jobengine.types.job import BackoffPolicy, EnqueueOptions, JobContext, WorkerConfig
from jobengine.worker.engine import Worker

WORKER = "scenario-worker"


async def run_until_finished(store: MemoryStore, clock, queue_name: str, job_id, handler):
    """
    Drive one job through the claim/report cycle, jumping the clock to each retry.

    Returns:
        Tuple of (final job, delays between attempts in ms).
    """
    delays = []
    while True:
        job = await store.claim(queue_name, WORKER, 30)
        if job is None:
            pending = await store.get_job(job_id)
            if pending.is_finished:
                return pending, delays
            delays.append((pending.run_at - clock.now).total_seconds() * 1000)
            clock.now = pending.run_at
            continue

        try:
            await handler(job)
        except Exception as e:
            await store.fail(job.id, WORKER, str(e))
        else:
            await store.complete(job.id, WORKER)


class TestNotificationRetries:
    """Retry behaviour of the notifications queue."""

    async def test_always_failing_notification(self, store: MemoryStore, clock):
        """Test five attempts spaced 1s, 2s, 4s, 8s apart before failing."""
        queue = create_queues(store)[NOTIFICATION_QUEUE]
        calls = 0

        async def handler(job) -> None:
            nonlocal calls
            calls += 1
            raise ConnectionError("smtp down")

        handle = await queue.enqueue({"user_id": "u1"})
        job, delays = await run_until_finished(store, clock, NOTIFICATION_QUEUE, handle.id, handler)

        assert calls == 5
        assert delays == [1000, 2000, 4000, 8000]
        assert sum(delays) == 15000
        assert job.state == JobState.FAILED
        assert job.attempts_made == 5
        assert job.last_error == "smtp down"

    async def test_notification_succeeds_on_last_attempt(self, store: MemoryStore, clock):
        """Test failures on attempts 1-4 wait 15s in total before the fifth succeeds."""
        queue = create_queues(store)[NOTIFICATION_QUEUE]
        calls = 0

        async def handler(job) -> None:
            nonlocal calls
            calls += 1
            if calls < 5:
                raise ConnectionError("smtp down")

        handle = await queue.enqueue({"user_id": "u1"})
        job, delays = await run_until_finished(store, clock, NOTIFICATION_QUEUE, handle.id, handler)

        assert calls == 5
        assert sum(delays) == 15000
        assert job.state == JobState.COMPLETED
        assert job.attempts_made == 5

    async def test_notification_recovers(self, store: MemoryStore, clock):
        """Test a notification that succeeds on its third attempt."""
        queue = create_queues(store)[NOTIFICATION_QUEUE]
        calls = 0

        async def handler(job) -> None:
            nonlocal calls
            calls += 1
            if calls < 3:
                raise ConnectionError("smtp down")

        handle = await queue.enqueue({"user_id": "u1"})
        job, delays = await run_until_finished(store, clock, NOTIFICATION_QUEUE, handle.id, handler)

        assert calls == 3
        assert delays == [1000, 2000]
        assert job.state == JobState.COMPLETED


class TestCheckSourceRetries:
    """Retry behaviour of the check-source queue."""

    async def test_always_failing_check(self, store: MemoryStore, clock):
        """Test three attempts spaced 5s and 10s apart before failing."""
        queue = create_queues(store)[CHECK_SOURCE_QUEUE]

        async def handler(job) -> None:
            raise TimeoutError("source unreachable")

        handle = await queue.enqueue({"source_id": "s1"})
        job, delays = await run_until_finished(store, clock, CHECK_SOURCE_QUEUE, handle.id, handler)

        assert delays == [5000, 10000]
        assert job.state == JobState.FAILED
        assert job.attempts_made == 3


class TestWorkerRetries:
    """Retry timing through a running worker."""

    async def test_worker_respects_backoff(self, live_store: MemoryStore):
        """Test a running worker waits out each backoff before retrying."""
        queue = create_queues(live_store)[NOTIFICATION_QUEUE]
        starts = []

        async def handle(context: JobContext) -> None:
            starts.append(time.monotonic())
            raise ConnectionError("smtp down")

        handle_ref = await queue.enqueue(
            {"user_id": "u1"},
            EnqueueOptions(backoff=BackoffPolicy(type=BackoffType.EXPONENTIAL, delay_ms=20)),
        )
        worker = Worker(
            WorkerConfig(queue_name=NOTIFICATION_QUEUE, concurrency=10),
            live_store,
            handle,
            poll_interval=0.005,
        )

        await worker.start()
        for _ in range(200):
            job = await live_store.get_job(handle_ref.id)
            if job.state == JobState.FAILED:
                break
            await asyncio.sleep(0.01)
        await worker.close()

        assert len(starts) == 5
        gaps = [b - a for a, b in zip(starts, starts[1:])]
        for gap, expected in zip(gaps, [0.02, 0.04, 0.08, 0.16]):
            assert gap >= expected - 0.005
        assert (await live_store.get_job(handle_ref.id)).state == JobState.FAILED
