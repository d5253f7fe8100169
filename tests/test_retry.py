"""
Tests for the retry orchestrator.

Covers attempt budgets, classification-driven retry decisions, correlation
ids, per-attempt and call-level deadlines, and the interaction with the
circuit breaker (one verdict per logical call).
"""

import asyncio
import re

import httpx
import pytest

from breakwater.core.config import Config
from breakwater.core.exceptions import (
    CircuitOpenError,
    ClientError,
    NetworkError,
    RateLimitedError,
    RemoteError,
    RequestTimeoutError,
    ServerError,
)
from breakwater.core.types import ErrorPayload
from breakwater.resilience.backoff import BackoffConfig, ExponentialBackoff
from breakwater.resilience.circuit import CircuitState
from breakwater.resilience.ratelimit import MinIntervalRateLimiter
from breakwater.resilience.retry import RetryOrchestrator, exclude_client_errors
from breakwater.transport.base import RequestSpec, Response


def remote(status, message="upstream said no"):
    return RemoteError(ErrorPayload(message=message, status=status))


def unavailable():
    raise remote(503, "Service Unavailable")


def make_orchestrator(transport, breaker, clock, min_interval=0.0, **kwargs):
    return RetryOrchestrator(
        transport,
        breaker=breaker,
        backoff=ExponentialBackoff(
            BackoffConfig(base_delay=0.1, max_delay=1.0, jitter=False), clock=clock
        ),
        rate_limiter=MinIntervalRateLimiter(min_interval, clock=clock),
        clock=clock,
        **kwargs,
    )


class TestRetryLoop:
    """Tests for retry decisions and attempt accounting."""

    @pytest.mark.asyncio
    async def test_success_first_attempt(self, make_transport, breaker, clock, ok_response):
        transport = make_transport(ok_response)
        orchestrator = make_orchestrator(transport, breaker, clock)

        response = await orchestrator.call(RequestSpec("/v1/ping"))

        assert response is ok_response
        assert transport.call_count == 1
        assert clock.sleeps == []
        assert re.fullmatch(r"[0-9a-f]{32}", transport.calls[0]["headers"]["X-Request-ID"])

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self, make_transport, breaker, clock, ok_response):
        """Transient failures are retried with growing backoff."""
        transport = make_transport(
            remote(503), httpx.ConnectError("connection refused"), ok_response
        )
        orchestrator = make_orchestrator(transport, breaker, clock)

        response = await orchestrator.call(RequestSpec("/v1/blocks"))

        assert response.status == 200
        assert transport.call_count == 3
        assert clock.sleeps == pytest.approx([0.1, 0.2])

        metrics = breaker.get_metrics()
        assert metrics.total_requests == 1
        assert metrics.success_count == 1
        assert metrics.failure_count == 0

    @pytest.mark.asyncio
    async def test_message_classified_failures_retry(self, make_transport, breaker, clock):
        transport = make_transport(RuntimeError("fetch failed"))
        orchestrator = make_orchestrator(transport, breaker, clock)

        response = await orchestrator.call(RequestSpec("/v1/ping"))

        assert response.ok
        assert transport.call_count == 2

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self, make_transport, breaker, clock):
        """A 4xx fails after exactly one transport call."""
        transport = make_transport(remote(400, "Bad Request"))
        orchestrator = make_orchestrator(transport, breaker, clock)

        with pytest.raises(ClientError) as exc_info:
            await orchestrator.call(RequestSpec("/v1/scripts", method="POST", body={"x": 1}))

        error = exc_info.value
        assert transport.call_count == 1
        assert clock.sleeps == []
        assert error.status == 400
        assert error.total_attempts == 1
        assert error.endpoint == "/v1/scripts"
        assert error.correlation_id == transport.calls[0]["headers"]["X-Request-ID"]
        assert error.should_retry_later is False

    @pytest.mark.asyncio
    async def test_exhaustion_raises_enriched_error(self, make_transport, breaker, clock):
        """After max_attempts the last failure surfaces, typed and enriched."""
        transport = make_transport(fallback=unavailable)
        orchestrator = make_orchestrator(transport, breaker, clock, max_attempts=4)

        with pytest.raises(ServerError) as exc_info:
            await orchestrator.call(RequestSpec("/v1/blocks"))

        error = exc_info.value
        assert transport.call_count == 4
        assert clock.sleeps == pytest.approx([0.1, 0.2, 0.4])
        assert error.total_attempts == 4
        assert error.status == 503
        assert error.details["endpoint"] == "/v1/blocks"
        assert isinstance(error.__cause__, RemoteError)

        # One logical call, one breaker failure
        metrics = breaker.get_metrics()
        assert metrics.total_requests == 1
        assert metrics.failure_count == 1

    @pytest.mark.asyncio
    async def test_rate_limited_exhaustion(self, make_transport, breaker, clock):
        transport = make_transport(remote(429), remote(429))
        orchestrator = make_orchestrator(transport, breaker, clock, max_attempts=2)

        with pytest.raises(RateLimitedError) as exc_info:
            await orchestrator.call(RequestSpec("/v1/ping"))

        assert exc_info.value.should_retry_later is True
        assert exc_info.value.total_attempts == 2

    @pytest.mark.asyncio
    async def test_single_attempt_budget(self, make_transport, breaker, clock):
        transport = make_transport(httpx.ConnectError("refused"))
        orchestrator = make_orchestrator(transport, breaker, clock, max_attempts=1)

        with pytest.raises(NetworkError) as exc_info:
            await orchestrator.call(RequestSpec("/v1/ping"))

        assert transport.call_count == 1
        assert exc_info.value.total_attempts == 1

    def test_invalid_budget_rejected(self, make_transport, breaker, clock):
        with pytest.raises(ValueError):
            make_orchestrator(make_transport(), breaker, clock, max_attempts=0)


class TestCorrelation:
    """Tests for correlation id propagation."""

    @pytest.mark.asyncio
    async def test_same_id_across_attempts(self, make_transport, breaker, clock):
        transport = make_transport(remote(502), remote(504))
        orchestrator = make_orchestrator(transport, breaker, clock)

        await orchestrator.call(RequestSpec("/v1/ping"))

        ids = {call["headers"]["X-Request-ID"] for call in transport.calls}
        assert transport.call_count == 3
        assert len(ids) == 1

    @pytest.mark.asyncio
    async def test_new_id_per_call(self, make_transport, breaker, clock):
        transport = make_transport()
        orchestrator = make_orchestrator(transport, breaker, clock)

        await orchestrator.call(RequestSpec("/v1/ping"))
        await orchestrator.call(RequestSpec("/v1/ping"))

        first, second = (call["headers"]["X-Request-ID"] for call in transport.calls)
        assert first != second

    @pytest.mark.asyncio
    async def test_custom_header_and_caller_headers(self, make_transport, breaker, clock):
        transport = make_transport()
        orchestrator = make_orchestrator(
            transport, breaker, clock, correlation_header="X-Correlation-ID"
        )

        await orchestrator.request(
            "post", "/v1/tx", headers={"X-Tenant": "acme"}, body={"script": "main"}
        )

        call = transport.calls[0]
        assert call["method"] == "POST"
        assert call["body"] == {"script": "main"}
        assert call["headers"]["X-Tenant"] == "acme"
        assert "X-Correlation-ID" in call["headers"]
        assert "X-Request-ID" not in call["headers"]


class TestDeadlines:
    """Tests for per-attempt and call-level timeouts."""

    @pytest.mark.asyncio
    async def test_per_attempt_timeout_is_retried(self, make_transport, breaker, clock, ok_response):
        async def hang():
            await asyncio.sleep(10)

        transport = make_transport(hang, ok_response)
        orchestrator = make_orchestrator(transport, breaker, clock, per_attempt_timeout=0.05)

        response = await orchestrator.call(RequestSpec("/v1/slow"))

        assert response is ok_response
        assert transport.call_count == 2
        assert transport.calls[0]["deadline"] == 0.05

    @pytest.mark.asyncio
    async def test_per_attempt_timeouts_exhaust(self, make_transport, breaker, clock):
        async def hang():
            await asyncio.sleep(10)

        transport = make_transport(hang, hang)
        orchestrator = make_orchestrator(
            transport, breaker, clock, max_attempts=2, per_attempt_timeout=0.02
        )

        with pytest.raises(RequestTimeoutError) as exc_info:
            await orchestrator.call(RequestSpec("/v1/slow"))

        assert exc_info.value.retryable is True
        assert exc_info.value.total_attempts == 2

    @pytest.mark.asyncio
    async def test_call_timeout_is_terminal(self, make_transport, breaker, clock):
        """The call deadline cuts the loop short and is never retried."""

        async def hang():
            await asyncio.sleep(10)

        transport = make_transport(hang, hang, hang)
        orchestrator = make_orchestrator(transport, breaker, clock, per_attempt_timeout=5.0)

        with pytest.raises(RequestTimeoutError) as exc_info:
            await orchestrator.call(RequestSpec("/v1/slow", timeout=0.05))

        error = exc_info.value
        assert error.retryable is False
        assert error.total_attempts == 1
        assert error.endpoint == "/v1/slow"
        assert transport.call_count == 1
        assert breaker.get_metrics().failure_count == 1

    @pytest.mark.asyncio
    async def test_caller_cancellation_propagates(self, make_transport, breaker, clock):
        started = asyncio.Event()

        async def hang():
            started.set()
            await asyncio.sleep(10)

        orchestrator = make_orchestrator(make_transport(hang), breaker, clock)
        task = asyncio.create_task(orchestrator.call(RequestSpec("/v1/slow")))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        metrics = breaker.get_metrics()
        assert metrics.total_failures == 1
        assert metrics.success_count == 0


class TestCircuitIntegration:
    """Tests for the breaker wrapped around the whole retry loop."""

    @pytest.mark.asyncio
    async def test_open_circuit_fails_fast(self, make_transport, breaker, clock):
        """Three exhausted calls trip the breaker; the fourth never hits the transport."""
        transport = make_transport(fallback=unavailable)
        orchestrator = make_orchestrator(transport, breaker, clock)

        for _ in range(3):
            with pytest.raises(ServerError):
                await orchestrator.call(RequestSpec("/v1/blocks"))

        assert breaker.get_state() == CircuitState.OPEN
        calls_before = transport.call_count

        with pytest.raises(CircuitOpenError) as exc_info:
            await orchestrator.call(RequestSpec("/v1/blocks"))

        error = exc_info.value
        assert "is OPEN" in str(error)
        assert transport.call_count == calls_before
        assert error.total_attempts == 0
        assert error.endpoint == "/v1/blocks"
        assert error.correlation_id

        # Cooldown over: a probe goes through and closes the circuit
        clock.advance(5.0)
        transport.fallback = Response(200, content=b"{}")

        response = await orchestrator.call(RequestSpec("/v1/blocks"))

        assert response.ok
        assert breaker.get_state() == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_client_errors_can_be_excluded(self, make_transport, clock):
        config = Config(
            failure_threshold=1,
            count_client_errors=False,
            min_inter_attempt_interval=0.0,
            backoff_jitter=False,
            retry_attempts=1,
        )
        transport = make_transport(remote(404, "resource not found"))
        orchestrator = RetryOrchestrator.from_config(config, transport, clock=clock)

        with pytest.raises(ClientError):
            await orchestrator.call(RequestSpec("/v1/accounts/0x0"))
        assert orchestrator.breaker.get_state() == CircuitState.CLOSED

        transport.fallback = remote(500)
        with pytest.raises(ServerError):
            await orchestrator.call(RequestSpec("/v1/accounts/0x0"))
        assert orchestrator.breaker.get_state() == CircuitState.OPEN

    def test_exclude_client_errors_predicate(self):
        assert exclude_client_errors(ClientError("bad")) is False
        assert exclude_client_errors(ServerError("down")) is True
        assert exclude_client_errors(RuntimeError("other")) is True


class TestRateLimiting:
    """Tests for spacing between attempts."""

    @pytest.mark.asyncio
    async def test_attempts_are_spaced(self, make_transport, breaker, clock, ok_response):
        transport = make_transport(remote(503), remote(503), ok_response)
        orchestrator = make_orchestrator(transport, breaker, clock, min_interval=0.5)

        await orchestrator.call(RequestSpec("/v1/ping"))

        # backoff 0.1, top-up to 0.5, backoff 0.2, top-up to 0.5
        assert clock.sleeps == pytest.approx([0.1, 0.4, 0.2, 0.3])


class TestStats:
    """Tests for metrics exposed by the orchestrator."""

    @pytest.mark.asyncio
    async def test_request_stats(self, make_transport, breaker, clock):
        transport = make_transport(remote(503))
        orchestrator = make_orchestrator(transport, breaker, clock)

        await orchestrator.call(RequestSpec("/v1/ping"))
        await orchestrator.call(RequestSpec("/v1/ping"))

        stats = orchestrator.get_request_stats()
        assert stats["total_calls"] == 2
        assert stats["total_attempts"] == 3
        assert stats["last_request_time"] == clock.monotonic()
        assert stats["circuit_breaker"]["state"] == "closed"
        assert stats["circuit_breaker"]["success_rate"] == 1.0

        snapshot = orchestrator.get_metrics()
        assert snapshot.average_response_time == pytest.approx(0.05)
