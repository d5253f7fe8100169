"""
In-process Circuit Breaker Implementation.

Guards an upstream dependency: once failures reach the threshold the circuit
"trips" (OPEN) and rejects calls without running them for `reset_timeout`
seconds, then lets a limited number of probes through (HALF_OPEN).

All state lives on the instance and is mutated under one lock whose critical
sections never await, so a single breaker can be shared by any number of
concurrent tasks or threads. Cooldown expiry is checked lazily against the
injected clock; there are no background timers.

Usage:
    breaker = CircuitBreaker("upstream", CircuitBreakerConfig(failure_threshold=3))
    result = await breaker.execute(lambda: fetch_block(height))

    async with breaker:
        await fetch_block(height)
"""

from __future__ import annotations

import asyncio
import threading
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, TypeVar

from breakwater.core.clock import DEFAULT_CLOCK, Clock
from breakwater.core.exceptions import CircuitOpenError, ConfigurationError
from breakwater.core.logging import get_logger

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit Breaker States."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, block requests
    HALF_OPEN = "half_open"  # Testing recovery


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Configuration for circuit breaker behavior."""

    # Failures (within monitoring_period) that trip the circuit
    failure_threshold: int = 5

    # Seconds to stay OPEN before allowing a probe
    reset_timeout: float = 60.0

    # Rolling window in seconds for counting CLOSED-state failures
    monitoring_period: float = 120.0

    # Max probes admitted while HALF_OPEN
    half_open_max_calls: int = 3

    def __post_init__(self) -> None:
        if self.failure_threshold <= 0:
            raise ConfigurationError("Failure threshold must be greater than 0")
        if self.reset_timeout <= 0:
            raise ConfigurationError("Reset timeout must be greater than 0")
        if self.monitoring_period <= 0:
            raise ConfigurationError("Monitoring period must be greater than 0")
        if self.half_open_max_calls <= 0:
            raise ConfigurationError("Half-open max calls must be greater than 0")


@dataclass(frozen=True)
class CircuitMetrics:
    """Point-in-time snapshot of a circuit breaker."""

    state: CircuitState
    failure_count: int
    success_count: int
    total_requests: int
    total_failures: int
    rejected_requests: int
    last_state_change_time: float
    last_failure_time: float | None
    next_attempt_time: float | None

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.success_count / self.total_requests


StateChangeCallback = Callable[[CircuitState, CircuitState], None]
FailurePredicate = Callable[[BaseException], bool]


class CircuitBreaker:
    """
    Circuit Breaker.

    Wraps calls to a flaky dependency. Counts every completed call as one
    success or one failure; rejected calls are counted separately and never
    reach the operation.
    """

    def __init__(
        self,
        name: str = "upstream",
        config: CircuitBreakerConfig | None = None,
        clock: Clock | None = None,
        failure_predicate: FailurePredicate | None = None,
        on_state_change: StateChangeCallback | None = None,
    ) -> None:
        """
        Initialize Circuit Breaker.

        Args:
            name: Identifier used in logs and in CircuitOpenError
            config: Thresholds and timeouts
            clock: Time source (tests inject a fake one)
            failure_predicate: Returns False for failures that must not count
                toward the threshold. Defaults to counting every failure.
            on_state_change: Called with (old, new) after each transition
        """
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock or DEFAULT_CLOCK
        self._failure_predicate = failure_predicate
        self._on_state_change = on_state_change
        self._logger = get_logger(f"circuit.{name}")

        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failure_times: deque[float] = deque()
        self._success_count = 0
        self._total_requests = 0
        self._total_failures = 0
        self._rejected_requests = 0
        self._half_open_calls = 0
        self._last_failure_time: float | None = None
        self._last_state_change_time = self._clock.monotonic()

        # Transitions made under the lock, reported once it is released
        self._pending: list[tuple[CircuitState, CircuitState]] = []

    # ------------------------------------------------------------------
    # Internals (called under lock)
    # ------------------------------------------------------------------

    def _check_state_transition(self, now: float) -> None:
        if self._state == CircuitState.OPEN:
            if now - self._last_state_change_time >= self.config.reset_timeout:
                self._transition_to(CircuitState.HALF_OPEN, now)

    def _prune_failures(self, now: float) -> None:
        if self._state != CircuitState.CLOSED:
            return
        horizon = now - self.config.monitoring_period
        while self._failure_times and self._failure_times[0] < horizon:
            self._failure_times.popleft()

    def _transition_to(self, new_state: CircuitState, now: float, force: bool = False) -> None:
        old_state = self._state
        if old_state == new_state and not force:
            return

        self._state = new_state
        self._last_state_change_time = now
        self._half_open_calls = 0

        if old_state == CircuitState.HALF_OPEN or new_state == CircuitState.HALF_OPEN:
            self._success_count = 0
        if new_state == CircuitState.CLOSED:
            self._failure_times.clear()

        if old_state != new_state:
            self._pending.append((old_state, new_state))

    def _admit(self, now: float) -> bool:
        self._check_state_transition(now)

        if self._state == CircuitState.CLOSED:
            return True

        if self._state == CircuitState.OPEN:
            return False

        # HALF_OPEN: limited probes
        if self._half_open_calls < self.config.half_open_max_calls:
            self._half_open_calls += 1
            return True
        return False

    def _retry_after(self, now: float) -> float:
        if self._state != CircuitState.OPEN:
            return 0.0
        elapsed = now - self._last_state_change_time
        return max(0.0, self.config.reset_timeout - elapsed)

    def _take_pending(self) -> list[tuple[CircuitState, CircuitState]]:
        pending, self._pending = self._pending, []
        return pending

    # ------------------------------------------------------------------
    # Reporting (called outside lock)
    # ------------------------------------------------------------------

    def _report(self, transitions: list[tuple[CircuitState, CircuitState]]) -> None:
        for old_state, new_state in transitions:
            if new_state == CircuitState.OPEN:
                self._logger.critical(
                    f"Circuit TRIPPED ({old_state.value} -> open). "
                    f"Blocking requests for {self.config.reset_timeout}s."
                )
            elif new_state == CircuitState.HALF_OPEN:
                self._logger.info("Recovery timeout passed. Entering HALF_OPEN.")
            else:
                self._logger.info(f"Circuit CLOSED ({old_state.value} -> closed). Service restored.")

            if self._on_state_change:
                try:
                    self._on_state_change(old_state, new_state)
                except Exception as e:
                    self._logger.warning(f"Error in circuit state change callback: {e}")

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def _acquire(self) -> None:
        """Admit a call or raise CircuitOpenError."""
        with self._lock:
            now = self._clock.monotonic()
            admitted = self._admit(now)
            if not admitted:
                self._rejected_requests += 1
                state = self._state
                retry_after = self._retry_after(now)
            transitions = self._take_pending()

        self._report(transitions)
        if not admitted:
            raise CircuitOpenError(self.name, state.value, retry_after)

    def record_success(self) -> None:
        """Record a completed, successful call."""
        with self._lock:
            self._total_requests += 1
            self._success_count += 1
            if self._state == CircuitState.HALF_OPEN:
                # One good probe is enough
                self._transition_to(CircuitState.CLOSED, self._clock.monotonic())
            transitions = self._take_pending()

        self._report(transitions)

    def record_failure(self, exc: BaseException) -> None:
        """Record a completed, failed call."""
        counted = self._failure_predicate is None or self._failure_predicate(exc)

        with self._lock:
            now = self._clock.monotonic()
            self._total_requests += 1
            self._total_failures += 1
            self._last_failure_time = now

            if not counted:
                if self._state == CircuitState.HALF_OPEN and self._half_open_calls > 0:
                    self._half_open_calls -= 1
            elif self._state == CircuitState.HALF_OPEN:
                self._failure_times.append(now)
                self._transition_to(CircuitState.OPEN, now)
            elif self._state == CircuitState.CLOSED:
                self._failure_times.append(now)
                self._prune_failures(now)
                if len(self._failure_times) >= self.config.failure_threshold:
                    self._transition_to(CircuitState.OPEN, now)
            else:
                # Completed after another call already tripped the circuit
                self._failure_times.append(now)

            failure_count = len(self._failure_times)
            transitions = self._take_pending()

        if counted:
            self._logger.warning(
                f"Failure recorded ({type(exc).__name__}). "
                f"Count: {failure_count}/{self.config.failure_threshold}"
            )
        else:
            self._logger.debug(f"Failure not counted toward threshold: {type(exc).__name__}")
        self._report(transitions)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run `operation` under circuit breaker protection.

        Args:
            operation: Zero-argument callable returning an awaitable

        Returns:
            Result of the operation

        Raises:
            CircuitOpenError: Circuit is OPEN (or HALF_OPEN with all probe
                slots taken); the operation is not invoked
            Exception: Anything the operation raises, after it is recorded
        """
        self._acquire()
        try:
            result = await operation()
        except (Exception, asyncio.CancelledError) as e:
            self.record_failure(e)
            raise
        self.record_success()
        return result

    def get_state(self) -> CircuitState:
        """Get current circuit state (may move OPEN -> HALF_OPEN)."""
        with self._lock:
            self._check_state_transition(self._clock.monotonic())
            state = self._state
            transitions = self._take_pending()
        self._report(transitions)
        return state

    def get_metrics(self) -> CircuitMetrics:
        """Get a snapshot of counters and state."""
        with self._lock:
            now = self._clock.monotonic()
            self._check_state_transition(now)
            self._prune_failures(now)
            next_attempt = (
                self._last_state_change_time + self.config.reset_timeout
                if self._state == CircuitState.OPEN
                else None
            )
            metrics = CircuitMetrics(
                state=self._state,
                failure_count=len(self._failure_times),
                success_count=self._success_count,
                total_requests=self._total_requests,
                total_failures=self._total_failures,
                rejected_requests=self._rejected_requests,
                last_state_change_time=self._last_state_change_time,
                last_failure_time=self._last_failure_time,
                next_attempt_time=next_attempt,
            )
            transitions = self._take_pending()
        self._report(transitions)
        return metrics

    def force_state(self, state: CircuitState) -> None:
        """
        Force the circuit into `state`, bypassing transition rules.

        Forcing OPEN restarts the cooldown. Forcing CLOSED clears the
        failure window.
        """
        with self._lock:
            self._transition_to(state, self._clock.monotonic(), force=True)
            transitions = self._take_pending()
        self._logger.info(f"Circuit state forced to: {state.value}")
        self._report(transitions)

    def reset(self) -> None:
        """Return to CLOSED with every counter zeroed."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_times.clear()
            self._success_count = 0
            self._total_requests = 0
            self._total_failures = 0
            self._rejected_requests = 0
            self._half_open_calls = 0
            self._last_failure_time = None
            self._last_state_change_time = self._clock.monotonic()
            self._pending.clear()
        self._logger.info("Circuit manually reset.")

    async def __aenter__(self) -> CircuitBreaker:
        """Context manager entry."""
        self._acquire()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        if exc_type is None:
            self.record_success()
        else:
            self.record_failure(exc_val)
        return False  # Propagate exception
