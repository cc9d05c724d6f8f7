"""
Job start rate limiting.
"""

import asyncio
import time
from collections import deque
from collections.abc import Callable

from jobengine.types.job import RateLimit


class RateLimiter:
    """
    Rolling-window limiter for job starts.

    Permits at most ``max_starts`` acquisitions within any window of
    ``window_seconds``. Each acquisition is stamped; a new one is allowed
    once the oldest stamp in the window has aged out. Unlike a refilling
    token bucket, this never lets a burst and a refill land in the same
    window.
    """

    def __init__(
        self,
        max_starts: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the rate limiter.

        Args:
            max_starts: Maximum acquisitions per window.
            window_seconds: Window length.
            clock: Monotonic time source.
        """
        if max_starts < 1:
            raise ValueError("max_starts must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")

        self.max_starts = max_starts
        self.window_seconds = window_seconds
        self._clock = clock
        self._starts: deque[float] = deque()
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls, rate_limit: RateLimit) -> "RateLimiter":
        """Create a limiter from a worker's rate limit settings."""
        return cls(rate_limit.max, rate_limit.window_seconds)

    def _prune(self, now: float) -> None:
        while self._starts and now - self._starts[0] >= self.window_seconds:
            self._starts.popleft()

    @property
    def wait_time(self) -> float:
        """Time in seconds until the next acquisition is allowed."""
        now = self._clock()
        self._prune(now)
        if len(self._starts) < self.max_starts:
            return 0.0
        return self._starts[0] + self.window_seconds - now

    def try_acquire(self) -> tuple[bool, float]:
        """
        Take a slot if one is free.

        Returns:
            Tuple of (allowed, wait_time_seconds).
        """
        now = self._clock()
        self._prune(now)
        if len(self._starts) < self.max_starts:
            self._starts.append(now)
            return True, 0.0
        return False, self._starts[0] + self.window_seconds - now

    async def acquire(self) -> None:
        """Wait until a slot is free, then take it."""
        async with self._lock:
            while True:
                allowed, wait_time = self.try_acquire()
                if allowed:
                    return
                await asyncio.sleep(wait_time)

    def refund(self) -> None:
        """Give back the most recent slot (the start did not happen)."""
        if self._starts:
            self._starts.pop()

    def restamp(self) -> None:
        """Move the most recent slot to now, when the start it reserved happens."""
        if self._starts:
            self._starts[-1] = self._clock()

    def reset(self) -> None:
        """Forget all recorded starts."""
        self._starts.clear()
