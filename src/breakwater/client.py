"""UpstreamClient - Main library entry point."""

from __future__ import annotations

import os
from typing import Any, Mapping

from breakwater.core.clock import Clock
from breakwater.core.config import Config
from breakwater.core.logging import configure_logging, get_logger
from breakwater.resilience.circuit import CircuitBreaker, CircuitMetrics, CircuitState
from breakwater.resilience.metrics import MetricsSnapshot
from breakwater.resilience.ratelimit import MinIntervalRateLimiter
from breakwater.resilience.retry import RetryOrchestrator
from breakwater.transport.base import RequestSpec, Response, Transport
from breakwater.transport.http import HttpxTransport


class UpstreamClient:
    """
    Resilient client for one upstream endpoint.

    Wires an httpx transport (or any Transport), a circuit breaker, backoff,
    rate limiting and retries from a single Config.

    Example:
        >>> async with UpstreamClient(Config(base_url="https://rest.example.org")) as client:
        ...     response = await client.get("/v1/blocks?height=sealed")
        ...     block = response.json()
    """

    def __init__(
        self,
        config: Config | None = None,
        transport: Transport | None = None,
        clock: Clock | None = None,
        log_level: int | str | None = None,
        name: str = "upstream",
        rate_limiter: MinIntervalRateLimiter | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            config: Settings (defaults to Config.from_env())
            transport: Custom transport (defaults to HttpxTransport)
            clock: Time source shared by every component
            log_level: Logging level (or from BREAKWATER_LOG_LEVEL env)
            name: Circuit breaker name used in logs and errors
            rate_limiter: Limiter shared with other clients of the same
                upstream (defaults to a private one). Limiters bind to one
                event loop; do not reuse a client across `asyncio.run` calls.
        """
        self._config = config or Config.from_env()

        if log_level is None:
            log_level = os.environ.get("BREAKWATER_LOG_LEVEL", self._config.log_level)

        configure_logging(level=log_level, json_format=self._config.log_json)
        self._logger = get_logger("client")

        self._owns_transport = transport is None
        self._transport = transport or HttpxTransport(
            base_url=self._config.base_url,
            api_key=self._config.api_key,
            user_agent=self._config.user_agent,
        )
        self._orchestrator = RetryOrchestrator.from_config(
            self._config, self._transport, clock=clock, name=name, rate_limiter=rate_limiter
        )

        self._logger.info(
            f"Initialized UpstreamClient (base_url={self._config.base_url or '<none>'}, "
            f"max_attempts={self._config.max_attempts}, "
            f"failure_threshold={self._config.failure_threshold})"
        )

    @property
    def config(self) -> Config:
        return self._config

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._orchestrator.breaker

    @property
    def orchestrator(self) -> RetryOrchestrator:
        return self._orchestrator

    async def request(
        self,
        method: str,
        endpoint: str,
        body: Any = None,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> Response:
        """
        Make a resilient request.

        Args:
            method: HTTP method
            endpoint: Path appended to the configured base URL
            body: JSON-serialisable body, or raw bytes/str
            headers: Extra headers for every attempt
            timeout: Deadline for the whole call including retries

        Raises:
            CircuitOpenError: Upstream is considered down; retry later
            ClientError: The request itself is invalid; do not retry
            UpstreamError: Other terminal failure after retries
        """
        spec = RequestSpec(
            endpoint=endpoint,
            method=method,
            headers=dict(headers or {}),
            body=body,
            timeout=timeout,
        )
        return await self._orchestrator.call(spec)

    async def get(self, endpoint: str, **kwargs: Any) -> Response:
        return await self.request("GET", endpoint, **kwargs)

    async def post(self, endpoint: str, body: Any = None, **kwargs: Any) -> Response:
        return await self.request("POST", endpoint, body=body, **kwargs)

    # Administrative interface

    def get_metrics(self) -> MetricsSnapshot:
        """Breaker counters plus latency aggregates."""
        return self._orchestrator.get_metrics()

    def get_circuit_metrics(self) -> CircuitMetrics:
        return self.circuit_breaker.get_metrics()

    def get_state(self) -> CircuitState:
        return self.circuit_breaker.get_state()

    def force_state(self, state: CircuitState) -> None:
        self.circuit_breaker.force_state(state)

    def reset_circuit_breaker(self) -> None:
        """Reset circuit breaker and latency metrics to initial state."""
        self.circuit_breaker.reset()
        self._orchestrator.metrics.reset()
        self._logger.info("Circuit breaker reset to CLOSED state")

    def get_request_stats(self) -> dict[str, Any]:
        return self._orchestrator.get_request_stats()

    async def close(self) -> None:
        """Close the owned transport."""
        if self._owns_transport and isinstance(self._transport, HttpxTransport):
            await self._transport.close()

    async def __aenter__(self) -> UpstreamClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
