"""
Pacing for calls against the rate-limited source API.

IntervalRateLimiter enforces a minimum gap between consecutive acquisitions,
sleeping only for whatever part of the interval has not already elapsed.
The clock and sleep function are injectable so tests can run without real
delays.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable


class IntervalRateLimiter:
    """
    Minimum-interval limiter shared by concurrent callers.

    The first acquire() never waits. Each later acquire() waits until at
    least `interval` seconds have passed since the previous one.
    """

    def __init__(
        self,
        interval: float,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if interval < 0:
            raise ValueError('interval must be >= 0')
        self.interval = interval
        self._sleep = sleep
        self._clock = clock
        self._lock = asyncio.Lock()
        self._last: float | None = None

    async def acquire(self) -> None:
        async with self._lock:
            if self._last is not None and self.interval > 0:
                wait = self.interval - (self._clock() - self._last)
                if wait > 0:
                    await self._sleep(wait)
            self._last = self._clock()

    def reset(self) -> None:
        """Forget the previous acquisition; the next acquire() is free."""
        self._last = None


class NoopRateLimiter(IntervalRateLimiter):
    """Limiter that never waits."""

    def __init__(self):
        super().__init__(0.0)

    async def acquire(self) -> None:
        return None
