"""
Unit tests for queue handles.
"""

import math

import pytest

from jobengine.constants import CHECK_SOURCE_QUEUE, NOTIFICATION_QUEUE, BackoffType, JobState
from jobengine.errors import EnqueueError, PayloadValidationError
from jobengine.queues import (
    DEFAULT_RETENTION,
    WORKER_CONFIGS,
    QueueHandle,
    create_queues,
    validate_payload,
)
from jobengine.store.memory import MemoryStore
from jobengine.types.job import BackoffPolicy, EnqueueOptions, JobOptions


class TestQueueDefinitions:
    """Tests for the built-in queues."""

    def test_check_source_defaults(self, store: MemoryStore):
        """Test source checks retry 3 times starting at 5 seconds."""
        queue = create_queues(store)[CHECK_SOURCE_QUEUE]

        assert queue.default_options.attempts == 3
        assert queue.default_options.backoff.type == BackoffType.EXPONENTIAL
        assert queue.default_options.backoff.delay_ms == 5000

    def test_notification_defaults(self, store: MemoryStore):
        """Test notifications retry 5 times starting at 1 second."""
        queue = create_queues(store)[NOTIFICATION_QUEUE]

        assert queue.default_options.attempts == 5
        assert queue.default_options.backoff.delay_ms == 1000

    def test_worker_limits(self):
        """Test per-queue concurrency and rate limits."""
        check = WORKER_CONFIGS[CHECK_SOURCE_QUEUE]
        notify = WORKER_CONFIGS[NOTIFICATION_QUEUE]

        assert check.concurrency == 5
        assert check.rate_limit.max == 10
        assert check.rate_limit.window_ms == 1000
        assert notify.concurrency == 10
        assert notify.rate_limit is None

    def test_retention_registered_with_store(self, store: MemoryStore):
        """Test creating handles registers their retention policy."""
        create_queues(store)

        assert store.get_retention(CHECK_SOURCE_QUEUE) == DEFAULT_RETENTION
        assert store.get_retention(NOTIFICATION_QUEUE) == DEFAULT_RETENTION


class TestEnqueue:
    """Tests for QueueHandle.enqueue."""

    @pytest.fixture
    def queue(self, store: MemoryStore) -> QueueHandle:
        """Create a queue handle with known defaults."""
        return QueueHandle(
            "test-queue",
            store,
            JobOptions(attempts=4, backoff=BackoffPolicy(delay_ms=250)),
        )

    async def test_enqueue_stores_waiting_job(self, queue: QueueHandle, store: MemoryStore):
        """Test enqueue adds a waiting job with the queue defaults."""
        handle = await queue.enqueue({"source_id": "abc"})

        job = await store.get_job(handle.id)
        assert handle.queue_name == "test-queue"
        assert job.state == JobState.WAITING
        assert job.payload == {"source_id": "abc"}
        assert job.max_attempts == 4
        assert job.backoff.delay_ms == 250

    async def test_enqueue_overrides(self, queue: QueueHandle, store: MemoryStore):
        """Test per-job options override the queue defaults."""
        handle = await queue.enqueue(
            {"source_id": "abc"},
            EnqueueOptions(attempts=1, backoff=BackoffPolicy(type=BackoffType.FIXED, delay_ms=10)),
        )

        job = await store.get_job(handle.id)
        assert job.max_attempts == 1
        assert job.backoff.type == BackoffType.FIXED

    async def test_enqueue_with_delay(self, queue: QueueHandle, store: MemoryStore, clock):
        """Test a delayed job becomes claimable only after its delay."""
        handle = await queue.enqueue({}, EnqueueOptions(delay_ms=2000))

        job = await store.get_job(handle.id)
        assert (job.run_at - clock.now).total_seconds() == 2.0

    async def test_partial_override_keeps_defaults(self, queue: QueueHandle):
        """Test overriding attempts leaves the default backoff in place."""
        resolved = queue.resolve_options(EnqueueOptions(attempts=2))

        assert resolved.attempts == 2
        assert resolved.backoff.delay_ms == 250

    async def test_rejects_non_mapping_payload(self, queue: QueueHandle):
        """Test a payload that is not a mapping is rejected."""
        with pytest.raises(PayloadValidationError):
            await queue.enqueue(["not", "a", "mapping"])

    async def test_rejects_unserializable_payload(self, queue: QueueHandle, store: MemoryStore):
        """Test a payload that cannot be serialized is rejected before storing."""
        with pytest.raises(PayloadValidationError):
            await queue.enqueue({"when": object()})

        assert (await store.get_job_counts("test-queue"))["waiting"] == 0

    async def test_store_unavailable_raises_enqueue_error(
        self,
        queue: QueueHandle,
        store: MemoryStore,
    ):
        """Test an unreachable store surfaces as EnqueueError."""
        await store.close()

        with pytest.raises(EnqueueError) as exc_info:
            await queue.enqueue({"source_id": "abc"})

        assert exc_info.value.queue_name == "test-queue"


class TestValidatePayload:
    """Tests for payload validation."""

    def test_valid_payload(self):
        """Test a nested JSON payload passes."""
        payload = {"ids": [1, 2], "meta": {"ok": True, "note": None}}

        assert validate_payload(payload) == payload

    def test_nan_rejected(self):
        """Test non-finite floats are rejected."""
        with pytest.raises(PayloadValidationError):
            validate_payload({"value": math.nan})

    def test_is_value_error(self):
        """Test validation errors are ValueErrors."""
        with pytest.raises(ValueError):
            validate_payload("string")
