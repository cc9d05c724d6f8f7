"""
Unit tests for store connection retries.
"""

import pytest

from jobengine.errors import StoreConnectionError
from jobengine.store import create_store
from jobengine.store.base import connect_with_retry
from jobengine.store.memory import MemoryStore


class FlakyProbe:
    """Probe that fails a set number of times before succeeding."""

    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0

    async def __call__(self) -> None:
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionRefusedError("connection refused")


class RecordingSleep:
    """Sleep replacement that records requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class TestConnectWithRetry:
    """Tests for connect_with_retry."""

    async def test_immediate_success(self):
        """Test a reachable store connects without waiting."""
        probe = FlakyProbe(failures=0)
        sleep = RecordingSleep()

        await connect_with_retry(probe, 5, 0.2, 5.0, sleep=sleep)

        assert probe.calls == 1
        assert sleep.delays == []

    async def test_recovers_after_failures(self):
        """Test transient failures are retried with growing delays."""
        probe = FlakyProbe(failures=3)
        sleep = RecordingSleep()

        await connect_with_retry(probe, 5, 0.2, 5.0, sleep=sleep)

        assert probe.calls == 4
        assert sleep.delays == pytest.approx([0.2, 0.4, 0.8])

    async def test_delay_is_capped(self):
        """Test no single wait exceeds the maximum."""
        probe = FlakyProbe(failures=8)
        sleep = RecordingSleep()

        await connect_with_retry(probe, 10, 0.2, 5.0, sleep=sleep)

        assert max(sleep.delays) == pytest.approx(5.0)
        assert sleep.delays == sorted(sleep.delays)

    async def test_gives_up_after_max_attempts(self):
        """Test a store that never answers raises StoreConnectionError."""
        probe = FlakyProbe(failures=100)
        sleep = RecordingSleep()

        with pytest.raises(StoreConnectionError) as exc_info:
            await connect_with_retry(probe, 20, 0.2, 5.0, sleep=sleep)

        assert probe.calls == 20
        assert len(sleep.delays) == 19
        assert exc_info.value.attempts == 20
        assert isinstance(exc_info.value.__cause__, ConnectionRefusedError)


class TestCreateStore:
    """Tests for store selection."""

    def test_memory_backend(self):
        """Test the memory backend is selectable by name."""
        assert isinstance(create_store("memory"), MemoryStore)

    def test_unknown_backend(self):
        """Test unknown backends are rejected."""
        with pytest.raises(ValueError):
            create_store("cassandra")
