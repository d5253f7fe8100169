"""
Retry orchestration using Tenacity.

RetryOrchestrator.call() runs the whole bounded retry loop as ONE operation
of the circuit breaker, so the breaker sees a single verdict per logical
call no matter how many attempts it took.

Each attempt:
1. waits on the shared rate limiter
2. calls the transport under a per-attempt deadline, tagged with the
   call's correlation id
3. on failure, is classified; retryable failures back off exponentially
   until the attempt budget is spent

The error that ends a call is always a typed UpstreamError enriched with
correlation id, endpoint and total attempts.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import TYPE_CHECKING, Any

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from breakwater.core.clock import DEFAULT_CLOCK, Clock
from breakwater.core.exceptions import (
    CircuitOpenError,
    RequestTimeoutError,
    UpstreamError,
)
from breakwater.core.logging import call_context, get_logger
from breakwater.core.types import ErrorKind, ErrorTaxonomyEntry, RetryContext
from breakwater.resilience.backoff import ExponentialBackoff
from breakwater.resilience.circuit import CircuitBreaker, FailurePredicate
from breakwater.resilience.classifier import ErrorClassifier, default_classifier
from breakwater.resilience.metrics import MetricsRecorder, MetricsSnapshot
from breakwater.resilience.ratelimit import MinIntervalRateLimiter
from breakwater.transport.base import RequestSpec, Response, Transport

if TYPE_CHECKING:
    from breakwater.core.config import Config


def new_correlation_id() -> str:
    """Opaque id shared by every attempt of one call."""
    return uuid.uuid4().hex


def _extra(ctx: RetryContext) -> dict[str, Any]:
    return call_context(ctx.correlation_id, ctx.endpoint, ctx.attempts_made)


def exclude_client_errors(exc: BaseException) -> bool:
    """Breaker failure predicate that ignores request-shaped failures."""
    return not (isinstance(exc, UpstreamError) and exc.kind == ErrorKind.CLIENT_ERROR)


class RetryOrchestrator:
    """
    Resilient caller for a single upstream.

    Safe to share between concurrent tasks: the breaker, rate limiter and
    metrics recorder are the only shared state, everything else lives in a
    per-call RetryContext.
    """

    def __init__(
        self,
        transport: Transport,
        breaker: CircuitBreaker | None = None,
        backoff: ExponentialBackoff | None = None,
        classifier: ErrorClassifier | None = None,
        rate_limiter: MinIntervalRateLimiter | None = None,
        max_attempts: int = 4,
        per_attempt_timeout: float = 30.0,
        call_timeout: float | None = None,
        correlation_header: str = "X-Request-ID",
        clock: Clock | None = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            transport: Executes one attempt
            breaker: Circuit breaker guarding the whole call
            backoff: Delay policy between attempts
            classifier: Maps failures to retry decisions
            rate_limiter: Shared spacing between attempts; pass the same
                instance to several orchestrators to space them together
            max_attempts: Transport invocations per call (>= 1)
            per_attempt_timeout: Deadline for each attempt in seconds
            call_timeout: Default deadline for a whole call in seconds
            correlation_header: Header carrying the correlation id
            clock: Time source shared with the other components
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if per_attempt_timeout <= 0:
            raise ValueError("per_attempt_timeout must be positive")

        self._clock = clock or DEFAULT_CLOCK
        self.transport = transport
        self.breaker = breaker or CircuitBreaker(clock=self._clock)
        self.backoff = backoff or ExponentialBackoff(clock=self._clock)
        self.classifier = classifier or default_classifier
        self.rate_limiter = rate_limiter or MinIntervalRateLimiter(clock=self._clock)
        self.metrics = MetricsRecorder(self.breaker)
        self.max_attempts = max_attempts
        self.per_attempt_timeout = per_attempt_timeout
        self.call_timeout = call_timeout
        self.correlation_header = correlation_header
        self._logger = get_logger("retry")

    @classmethod
    def from_config(
        cls,
        config: Config,
        transport: Transport,
        clock: Clock | None = None,
        name: str = "upstream",
        rate_limiter: MinIntervalRateLimiter | None = None,
    ) -> RetryOrchestrator:
        """
        Build an orchestrator and its collaborators from a Config.

        Pass `rate_limiter` to space attempts together with other
        orchestrators; otherwise a new limiter is built from
        `min_inter_attempt_interval`.
        """
        clock = clock or DEFAULT_CLOCK
        failure_predicate: FailurePredicate | None = (
            None if config.count_client_errors else exclude_client_errors
        )
        breaker = CircuitBreaker(
            name,
            config.circuit_breaker_config(),
            clock=clock,
            failure_predicate=failure_predicate,
        )
        return cls(
            transport,
            breaker=breaker,
            backoff=ExponentialBackoff(config.backoff_config(), clock=clock),
            rate_limiter=rate_limiter
            or MinIntervalRateLimiter(config.min_inter_attempt_interval, clock=clock),
            max_attempts=config.max_attempts,
            per_attempt_timeout=config.per_attempt_timeout,
            call_timeout=config.call_timeout,
            correlation_header=config.correlation_header,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def call(self, spec: RequestSpec) -> Response:
        """
        Execute one logical call with circuit breaking, retries and backoff.

        Args:
            spec: Endpoint, method, headers, body and optional call deadline

        Returns:
            Transport response of the first successful attempt

        Raises:
            CircuitOpenError: Circuit is open; the transport was not invoked
            UpstreamError: Typed terminal error with correlation context
        """
        ctx = RetryContext(
            correlation_id=new_correlation_id(),
            endpoint=spec.endpoint,
            method=spec.method.upper(),
            max_attempts=self.max_attempts,
            start_time=self._clock.monotonic(),
        )
        timeout = spec.timeout if spec.timeout is not None else self.call_timeout
        self._logger.debug(
            f"[{ctx.correlation_id}] Starting {ctx.method} {ctx.endpoint}", extra=_extra(ctx)
        )

        try:
            return await self.breaker.execute(lambda: self._run(spec, ctx, timeout))
        except CircuitOpenError as e:
            e.enrich(ctx.correlation_id, ctx.endpoint, ctx.attempts_made)
            self._logger.warning(
                f"[{ctx.correlation_id}] {ctx.method} {ctx.endpoint} rejected: {e.message}",
                extra=_extra(ctx),
            )
            raise

    async def request(self, method: str, endpoint: str, **kwargs: Any) -> Response:
        """Shorthand for call(RequestSpec(endpoint, method, ...))."""
        return await self.call(RequestSpec(endpoint=endpoint, method=method, **kwargs))

    def get_metrics(self) -> MetricsSnapshot:
        return self.metrics.snapshot()

    def get_request_stats(self) -> dict[str, Any]:
        """Request counters for dashboards."""
        snapshot = self.metrics.snapshot()
        return {
            "total_calls": snapshot.total_calls,
            "total_attempts": snapshot.total_attempts,
            "last_request_time": self.rate_limiter.last_attempt_time,
            "circuit_breaker": snapshot.to_dict(),
        }

    # ------------------------------------------------------------------
    # Retry loop
    # ------------------------------------------------------------------

    async def _run(self, spec: RequestSpec, ctx: RetryContext, timeout: float | None) -> Response:
        """The single operation the breaker observes."""
        try:
            if timeout is None:
                response = await self._retry_loop(spec, ctx)
            else:
                try:
                    response = await asyncio.wait_for(self._retry_loop(spec, ctx), timeout)
                except asyncio.TimeoutError as e:
                    self._logger.error(
                        f"[{ctx.correlation_id}] {ctx.method} {ctx.endpoint} exceeded call "
                        f"deadline of {timeout}s after {ctx.attempts_made} attempt(s)",
                        extra=_extra(ctx),
                    )
                    raise RequestTimeoutError(
                        f"Call exceeded {timeout}s deadline", retryable=False
                    ).enrich(ctx.correlation_id, ctx.endpoint, ctx.attempts_made) from e
        finally:
            self.metrics.record_call(self._clock.monotonic() - ctx.start_time, ctx.attempts_made)

        self._logger.info(
            f"[{ctx.correlation_id}] {ctx.method} {ctx.endpoint} -> {response.status} "
            f"({ctx.attempts_made} attempt(s))",
            extra=_extra(ctx),
        )
        return response

    async def _retry_loop(self, spec: RequestSpec, ctx: RetryContext) -> Response:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self.backoff,
            retry=retry_if_exception(lambda e: self._entry_for(ctx, e).retryable),
            sleep=self._clock.sleep,
            reraise=True,
            before_sleep=lambda rs: self._log_retry(ctx, rs),
        )
        try:
            async for attempt in retrying:
                with attempt:
                    ctx.attempt = attempt.retry_state.attempt_number - 1
                    return await self._attempt(spec, ctx)
        except Exception as e:
            raise self._terminal_error(ctx, e) from e

        raise AssertionError("retry loop exited without a result")  # pragma: no cover

    async def _attempt(self, spec: RequestSpec, ctx: RetryContext) -> Response:
        await self.rate_limiter.wait_for_permission()
        ctx.attempts_made += 1

        headers = dict(spec.headers)
        headers[self.correlation_header] = ctx.correlation_id

        try:
            try:
                return await asyncio.wait_for(
                    self.transport.execute(
                        ctx.endpoint, ctx.method, headers, spec.body, self.per_attempt_timeout
                    ),
                    self.per_attempt_timeout,
                )
            except asyncio.TimeoutError as e:
                raise RequestTimeoutError(
                    f"Request timeout after {self.per_attempt_timeout}s"
                ) from e
        except Exception as e:
            ctx.last_error = e
            ctx.last_entry = self.classifier.classify(e)
            self._logger.warning(
                f"[{ctx.correlation_id}] Attempt {ctx.attempts_made}/{ctx.max_attempts} "
                f"of {ctx.method} {ctx.endpoint} failed ({ctx.last_entry.kind.value}): {e}",
                extra=_extra(ctx),
            )
            raise

    def _entry_for(self, ctx: RetryContext, exc: BaseException) -> ErrorTaxonomyEntry:
        if exc is ctx.last_error and ctx.last_entry is not None:
            return ctx.last_entry
        return self.classifier.classify(exc)

    def _log_retry(self, ctx: RetryContext, retry_state: RetryCallState) -> None:
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        self._logger.warning(
            f"[{ctx.correlation_id}] Retrying {ctx.method} {ctx.endpoint} in {delay:.2f}s "
            f"(next attempt {retry_state.attempt_number + 1}/{ctx.max_attempts})",
            extra=_extra(ctx),
        )

    def _terminal_error(self, ctx: RetryContext, exc: Exception) -> UpstreamError:
        entry = self._entry_for(ctx, exc)
        if entry.retryable:
            self._logger.error(
                f"[{ctx.correlation_id}] All retry attempts exhausted for "
                f"{ctx.method} {ctx.endpoint} ({ctx.attempts_made} attempt(s)): {exc}",
                extra=_extra(ctx),
            )
        else:
            self._logger.error(
                f"[{ctx.correlation_id}] Error not retryable ({entry.kind.value}), failing "
                f"{ctx.method} {ctx.endpoint} after {ctx.attempts_made} attempt(s): {exc}",
                extra=_extra(ctx),
            )
        return self.classifier.to_exception(
            entry, exc, ctx.correlation_id, ctx.endpoint, ctx.attempts_made
        )
