"""
Exponential backoff with add-only jitter.

The delay for attempt `n` is `min(max_delay, base_delay * multiplier ** n)`.
Jitter only ever adds to that value and stays below the next attempt's base
delay, so delays strictly increase until they saturate at `max_delay`.

Usage:
    backoff = ExponentialBackoff(BackoffConfig(base_delay=0.5, max_delay=10))
    backoff.calculate_delay(0)   # 0.5 .. 0.55
    await backoff.delay(3)       # sleeps ~4s

    # As a tenacity wait strategy
    AsyncRetrying(wait=backoff, ...)
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import TYPE_CHECKING

from tenacity.wait import wait_base

from breakwater.core.clock import DEFAULT_CLOCK, Clock
from breakwater.core.exceptions import ConfigurationError

if TYPE_CHECKING:
    from tenacity import RetryCallState


@dataclass(frozen=True)
class BackoffConfig:
    """Configuration for exponential backoff (seconds)."""

    base_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter: bool = True

    # Upper bound of the added jitter as a fraction of the computed delay
    jitter_ratio: float = 0.1

    def __post_init__(self) -> None:
        if self.base_delay <= 0:
            raise ConfigurationError("Backoff base delay must be greater than 0")
        if self.max_delay < self.base_delay:
            raise ConfigurationError("Backoff max delay must be at least the base delay")
        if self.multiplier <= 1:
            raise ConfigurationError("Backoff multiplier must be greater than 1")
        if not 0 <= self.jitter_ratio < 1:
            raise ConfigurationError("Backoff jitter ratio must be in [0, 1)")


class ExponentialBackoff(wait_base):
    """
    Exponential backoff calculator.

    Stateless apart from configuration. Doubles as a tenacity wait strategy:
    tenacity numbers attempts from 1, this class from 0.
    """

    def __init__(
        self,
        config: BackoffConfig | None = None,
        clock: Clock | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config or BackoffConfig()
        self._clock = clock or DEFAULT_CLOCK
        self._rng = rng or random.Random()

    def _base(self, attempt: int) -> float:
        cfg = self.config
        # Very large attempts overflow float pow
        try:
            raw = cfg.base_delay * (cfg.multiplier**attempt)
        except OverflowError:
            return cfg.max_delay
        return min(cfg.max_delay, raw)

    def calculate_delay(self, attempt: int) -> float:
        """
        Calculate delay in seconds for a 0-indexed attempt.

        Args:
            attempt: Number of the attempt that just failed (0 = first)

        Returns:
            Delay in seconds, always > 0
        """
        if attempt < 0:
            raise ValueError("attempt must be >= 0")

        base = self._base(attempt)
        if not self.config.jitter or base >= self.config.max_delay:
            return base

        ceiling = min(self._base(attempt + 1), base * (1 + self.config.jitter_ratio))
        # random() is in [0, 1) so the result stays strictly below ceiling
        return base + self._rng.random() * (ceiling - base)

    async def delay(self, attempt: int) -> None:
        """Sleep for calculate_delay(attempt) seconds."""
        await self._clock.sleep(self.calculate_delay(attempt))

    def __call__(self, retry_state: RetryCallState) -> float:
        return self.calculate_delay(retry_state.attempt_number - 1)
