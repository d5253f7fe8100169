import asyncio
import inspect

import pytest

from breakwater.resilience.circuit import CircuitBreaker, CircuitBreakerConfig
from breakwater.transport.base import Response


class FakeClock:
    """Deterministic clock: sleeping advances time instantly."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        if seconds > 0:
            self.now += seconds
        # Still yield so other tasks can run
        await asyncio.sleep(0)

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport:
    """
    Scripted transport.

    Each call consumes the next outcome; once they run out, `fallback` is used.
    An outcome may be a Response, an exception instance or class, or a
    callable (sync or async) returning a Response or raising.
    """

    def __init__(self, *outcomes, fallback=None) -> None:
        self.outcomes = list(outcomes)
        self.fallback = fallback if fallback is not None else Response(200, content=b'{"ok": true}')
        self.calls: list[dict] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def execute(self, endpoint, method, headers, body, deadline):
        self.calls.append(
            {
                "endpoint": endpoint,
                "method": method,
                "headers": dict(headers),
                "body": body,
                "deadline": deadline,
            }
        )
        await asyncio.sleep(0)
        outcome = self.outcomes.pop(0) if self.outcomes else self.fallback

        if isinstance(outcome, Response):
            return outcome
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, type) and issubclass(outcome, BaseException):
            raise outcome(f"scripted {outcome.__name__}")

        result = outcome()
        if inspect.isawaitable(result):
            result = await result
        return result


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def breaker(clock):
    return CircuitBreaker(
        "test_service",
        CircuitBreakerConfig(
            failure_threshold=3,
            reset_timeout=5.0,
            monitoring_period=60.0,
            half_open_max_calls=2,
        ),
        clock=clock,
    )


@pytest.fixture
def ok_response():
    return Response(200, headers={"content-type": "application/json"}, content=b'{"ok": true}')


@pytest.fixture
def make_transport():
    """Factory for scripted transports."""
    return FakeTransport
