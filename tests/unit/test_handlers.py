"""
Unit tests for job handlers.
"""

import asyncio
from uuid import uuid4

import pytest

from jobengine.types.job import JobContext, JobResult
from jobengine.worker.handlers import (
    execute_handler,
    get_handler,
    register_handler,
    unregister_handler,
)


class TestHandlerRegistry:
    """Tests for the handler registry."""

    def test_register_and_get(self):
        """Test registering a handler for a queue."""
        @register_handler("registry-queue")
        async def handle(context: JobContext) -> None:
            return None

        assert get_handler("registry-queue") is handle

    def test_get_handler_not_exists(self):
        """Test getting a handler for an unknown queue."""
        assert get_handler("nonexistent") is None

    def test_register_replaces_existing(self):
        """Test a second registration replaces the first."""
        @register_handler("replaced-queue")
        async def first(context: JobContext) -> None:
            return None

        @register_handler("replaced-queue")
        async def second(context: JobContext) -> None:
            return None

        assert get_handler("replaced-queue") is second

    def test_unregister(self):
        """Test removing a handler."""
        @register_handler("removed-queue")
        async def handle(context: JobContext) -> None:
            return None

        unregister_handler("removed-queue")
        unregister_handler("removed-queue")

        assert get_handler("removed-queue") is None


class TestExecuteHandler:
    """Tests for handler outcome normalisation."""

    @pytest.fixture
    def job_context(self) -> JobContext:
        """Create a test job context."""
        return JobContext(
            job_id=uuid4(),
            queue_name="test-queue",
            payload={"message": "test"},
            attempt=1,
            max_attempts=3,
            worker_id="test-worker",
        )

    @pytest.mark.asyncio
    async def test_none_is_success(self, job_context: JobContext):
        """Test returning nothing counts as success."""
        async def handle(context: JobContext) -> None:
            return None

        result = await execute_handler(handle, job_context)

        assert result.success is True
        assert result.duration_ms is not None

    @pytest.mark.asyncio
    async def test_successful_result(self, job_context: JobContext):
        """Test an explicit successful result keeps its output."""
        async def handle(context: JobContext) -> JobResult:
            return JobResult(success=True, output={"echo": context.payload})

        result = await execute_handler(handle, job_context)

        assert result.success is True
        assert result.output == {"echo": {"message": "test"}}

    @pytest.mark.asyncio
    async def test_failed_result(self, job_context: JobContext):
        """Test an explicit failed result is a failure with its error."""
        async def handle(context: JobContext) -> JobResult:
            return JobResult(success=False, error="upstream said no")

        result = await execute_handler(handle, job_context)

        assert result.success is False
        assert result.error == "upstream said no"

    @pytest.mark.asyncio
    async def test_failed_result_without_error(self, job_context: JobContext):
        """Test a failed result without a message gets a default one."""
        async def handle(context: JobContext) -> JobResult:
            return JobResult(success=False)

        result = await execute_handler(handle, job_context)

        assert result.success is False
        assert result.error == "Handler reported failure"

    @pytest.mark.asyncio
    async def test_unsupported_result_is_failure(self, job_context: JobContext):
        """Test a return value that is neither None nor JobResult is a failure."""
        async def handle(context: JobContext) -> dict:
            return {"ok": True}

        result = await execute_handler(handle, job_context)

        assert result.success is False
        assert result.error == "Handler returned dict, expected JobResult or None"
        assert result.duration_ms is not None

    @pytest.mark.asyncio
    async def test_truthy_result_is_failure(self, job_context: JobContext):
        """Test returning True does not count as success."""
        async def handle(context: JobContext) -> bool:
            return True

        result = await execute_handler(handle, job_context)

        assert result.success is False
        assert "bool" in result.error

    @pytest.mark.asyncio
    async def test_exception_is_failure(self, job_context: JobContext):
        """Test a raising handler becomes a failed result."""
        async def handle(context: JobContext) -> None:
            raise RuntimeError("Intentional failure")

        result = await execute_handler(handle, job_context)

        assert result.success is False
        assert "Intentional failure" in result.error

    @pytest.mark.asyncio
    async def test_exception_without_message(self, job_context: JobContext):
        """Test an exception with no message reports its type."""
        async def handle(context: JobContext) -> None:
            raise KeyError()

        result = await execute_handler(handle, job_context)

        assert result.success is False
        assert result.error

    @pytest.mark.asyncio
    async def test_timeout_is_failure(self, job_context: JobContext):
        """Test exceeding the time limit becomes a failed result."""
        async def handle(context: JobContext) -> None:
            await asyncio.sleep(1)

        result = await execute_handler(handle, job_context, timeout_seconds=0.01)

        assert result.success is False
        assert "timed out" in result.error


class TestJobContext:
    """Tests for JobContext."""

    def test_is_last_attempt(self):
        """Test is_last_attempt property."""
        context = JobContext(
            job_id=uuid4(),
            queue_name="test",
            payload={},
            attempt=3,
            max_attempts=3,
            worker_id="worker",
        )

        assert context.is_last_attempt is True

    def test_remaining_attempts(self):
        """Test remaining_attempts property."""
        context = JobContext(
            job_id=uuid4(),
            queue_name="test",
            payload={},
            attempt=1,
            max_attempts=3,
            worker_id="worker",
        )

        assert context.remaining_attempts == 2
