"""
Time source used by every resilience component.

Components never call `time` or `asyncio.sleep` directly; they take a Clock
so tests can drive cooldowns and backoff deterministically.
"""

from __future__ import annotations

import asyncio
import time
from typing import Protocol


class Clock(Protocol):
    """Monotonic time plus an awaitable wait."""

    def monotonic(self) -> float: ...

    async def sleep(self, seconds: float) -> None: ...


class MonotonicClock:
    """Default clock backed by `time.monotonic` and `asyncio.sleep`."""

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)


DEFAULT_CLOCK = MonotonicClock()
