"""
Read-only metrics view over a circuit breaker plus per-call latency.

The breaker's counters come straight from CircuitBreaker.get_metrics();
call durations and attempt counts are fed in by the retry orchestrator.
"""

from __future__ import annotations

import math
import threading
from collections import deque
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from breakwater.resilience.circuit import CircuitBreaker, CircuitState


@dataclass(frozen=True)
class MetricsSnapshot:
    """Combined breaker and latency metrics."""

    state: CircuitState
    failure_count: int
    success_count: int
    total_requests: int
    total_failures: int
    rejected_requests: int
    last_state_change_time: float
    last_failure_time: float | None
    next_attempt_time: float | None
    success_rate: float
    average_response_time: float
    p95_response_time: float
    total_calls: int
    total_attempts: int

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        return data


class MetricsRecorder:
    """Aggregates breaker counters and a bounded window of call latencies."""

    def __init__(self, breaker: CircuitBreaker, latency_window: int = 1000) -> None:
        if latency_window <= 0:
            raise ValueError("latency_window must be positive")
        self._breaker = breaker
        self._latencies: deque[float] = deque(maxlen=latency_window)
        self._total_calls = 0
        self._total_attempts = 0
        self._lock = threading.Lock()

    def record_call(self, duration: float, attempts: int) -> None:
        """Record one finished top-level call (success or failure)."""
        with self._lock:
            self._latencies.append(duration)
            self._total_calls += 1
            self._total_attempts += attempts

    def reset(self) -> None:
        with self._lock:
            self._latencies.clear()
            self._total_calls = 0
            self._total_attempts = 0

    def snapshot(self) -> MetricsSnapshot:
        """Build a metrics snapshot."""
        circuit = self._breaker.get_metrics()
        with self._lock:
            latencies = sorted(self._latencies)
            total_calls = self._total_calls
            total_attempts = self._total_attempts

        if latencies:
            average = sum(latencies) / len(latencies)
            # Nearest-rank percentile
            p95 = latencies[max(0, math.ceil(0.95 * len(latencies)) - 1)]
        else:
            average = p95 = 0.0

        return MetricsSnapshot(
            state=circuit.state,
            failure_count=circuit.failure_count,
            success_count=circuit.success_count,
            total_requests=circuit.total_requests,
            total_failures=circuit.total_failures,
            rejected_requests=circuit.rejected_requests,
            last_state_change_time=circuit.last_state_change_time,
            last_failure_time=circuit.last_failure_time,
            next_attempt_time=circuit.next_attempt_time,
            success_rate=circuit.success_rate,
            average_response_time=average,
            p95_response_time=p95,
            total_calls=total_calls,
            total_attempts=total_attempts,
        )
