"""
Sliding-window rate limiter.

A call that would exceed ``max_requests`` within ``window_seconds`` waits
until the oldest request leaves the window. Callers are smoothed, never
rejected.
"""

import asyncio
import time
from collections import deque
from typing import Awaitable, Callable

import structlog

logger = structlog.get_logger()


class SlidingWindowRateLimiter:
    """
    Per-provider request limiter.

    Waiters queue on an asyncio.Lock, so concurrent fetches for the same
    provider are admitted one at a time in arrival order.

    Usage:
        limiter = SlidingWindowRateLimiter(max_requests=10, window_seconds=60)
        await limiter.acquire()
        response = await client.get(...)
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        name: str = "",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")

        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.name = name

        self._clock = clock
        self._sleep = sleep
        self._timestamps: deque[float] = deque()
        self._lock = asyncio.Lock()

        self.logger = logger.bind(component="rate_limiter", provider=name)

        # Metrics
        self._total_acquired = 0
        self._total_waited_seconds = 0.0

    def reconfigure(self, max_requests: int, window_seconds: float) -> None:
        """Apply new limits; already-recorded requests still count."""
        if max_requests < 1 or window_seconds <= 0:
            raise ValueError("invalid rate limit")
        self.max_requests = max_requests
        self.window_seconds = window_seconds

    def _evict(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] >= self.window_seconds:
            self._timestamps.popleft()

    async def acquire(self) -> float:
        """
        Wait for a free slot and claim it.

        Returns:
            Seconds spent waiting
        """
        waited = 0.0
        async with self._lock:
            while True:
                now = self._clock()
                self._evict(now)

                if len(self._timestamps) < self.max_requests:
                    self._timestamps.append(now)
                    self._total_acquired += 1
                    self._total_waited_seconds += waited
                    return waited

                wait = self._timestamps[0] + self.window_seconds - now
                self.logger.debug(
                    "Rate limit reached, waiting",
                    seconds=round(wait, 3),
                    in_window=len(self._timestamps),
                )
                await self._sleep(wait)
                waited += wait

    def in_window(self) -> int:
        """Requests currently counted against the window."""
        self._evict(self._clock())
        return len(self._timestamps)

    def get_metrics(self) -> dict:
        return {
            "max_requests": self.max_requests,
            "window_seconds": self.window_seconds,
            "in_window": self.in_window(),
            "total_acquired": self._total_acquired,
            "total_waited_seconds": round(self._total_waited_seconds, 3),
        }
