"""
Minimum spacing between outbound attempts.

One limiter is shared by every call that goes through the same orchestrator.
Spacing is NOT process-wide by default: two independently built clients each
get their own limiter. Build one limiter and hand it to every client that
talks to the same upstream to space them together:

    limiter = MinIntervalRateLimiter(0.5)
    a = UpstreamClient(config, rate_limiter=limiter)
    b = UpstreamClient(config, rate_limiter=limiter)

The limiter holds an asyncio.Lock, which binds to the first event loop that
contends on it. Use a limiter (and the clients sharing it) from one event
loop only; reusing it across separate `asyncio.run` calls can raise
RuntimeError.
"""

from __future__ import annotations

import asyncio

from breakwater.core.clock import DEFAULT_CLOCK, Clock
from breakwater.core.logging import get_logger


class MinIntervalRateLimiter:
    """Waits until at least `min_interval` seconds passed since the previous attempt."""

    def __init__(self, min_interval: float = 0.1, clock: Clock | None = None) -> None:
        """
        Initialize the rate limiter.

        Args:
            min_interval: Minimum seconds between consecutive attempts
            clock: Time source
        """
        if min_interval < 0:
            raise ValueError("min_interval cannot be negative")
        self.min_interval = min_interval
        self._clock = clock or DEFAULT_CLOCK
        self._last_attempt: float | None = None
        self._lock = asyncio.Lock()
        self._logger = get_logger("ratelimit")

    @property
    def last_attempt_time(self) -> float | None:
        return self._last_attempt

    def get_wait_time(self) -> float:
        """Seconds the next attempt would have to wait right now."""
        if self._last_attempt is None:
            return 0.0
        elapsed = self._clock.monotonic() - self._last_attempt
        return max(0.0, self.min_interval - elapsed)

    async def wait_for_permission(self) -> float:
        """
        Wait out the remaining interval and claim the next slot.

        Returns:
            Seconds actually waited
        """
        async with self._lock:
            wait_time = self.get_wait_time()
            if wait_time > 0:
                self._logger.debug(f"Spacing attempts. Waiting {wait_time:.3f}s.")
                await self._clock.sleep(wait_time)
            self._last_attempt = self._clock.monotonic()
            return wait_time
