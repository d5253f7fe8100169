"""
Exception hierarchy for Breakwater.

All library exceptions inherit from BreakwaterError for easy catching.
Every failure of a resilient call surfaces as an UpstreamError subclass
whose `kind` tells "retry later yourself" apart from "fix your request".
"""

from __future__ import annotations

from typing import Any

from breakwater.core.types import ErrorKind, ErrorPayload


class BreakwaterError(Exception):
    """
    Base exception for all Breakwater errors.

    Example:
        >>> try:
        ...     await client.get("/v1/blocks/latest")
        ... except BreakwaterError as e:
        ...     print(f"Upstream call failed: {e}")
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(BreakwaterError):
    """
    Configuration is missing or invalid.

    Raised when:
    - Circuit breaker or backoff settings are out of range
    - Environment variables cannot be parsed
    """

    pass


class RemoteError(BreakwaterError):
    """
    Raw structured error reported by the upstream endpoint.

    Transports raise this for non-success responses. The retry orchestrator
    classifies it and never lets it reach the caller unwrapped.
    """

    def __init__(self, payload: ErrorPayload, details: dict[str, Any] | None = None) -> None:
        super().__init__(payload.message or f"HTTP {payload.status}", details)
        self.payload = payload

    @property
    def status(self) -> int | None:
        return self.payload.status

    @property
    def code(self) -> str | None:
        return self.payload.code


class UpstreamError(BreakwaterError):
    """
    Base exception for failed resilient calls.

    Carries the classification plus the correlation id, endpoint and
    number of attempts of the call it terminated.
    """

    kind: ErrorKind = ErrorKind.TERMINAL
    retryable: bool = True

    def __init__(
        self,
        message: str,
        correlation_id: str | None = None,
        endpoint: str | None = None,
        total_attempts: int | None = None,
        status: int | None = None,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.correlation_id = correlation_id
        self.endpoint = endpoint
        self.total_attempts = total_attempts
        self.status = status
        self.code = code

    @property
    def should_retry_later(self) -> bool:
        """True when the request itself is fine and the upstream is degraded."""
        return self.kind in (ErrorKind.RATE_LIMITED, ErrorKind.CIRCUIT_OPEN)

    def enrich(
        self,
        correlation_id: str,
        endpoint: str,
        total_attempts: int,
    ) -> UpstreamError:
        """Attach call context and return self."""
        self.correlation_id = correlation_id
        self.endpoint = endpoint
        self.total_attempts = total_attempts
        self.details.update(
            {
                "correlation_id": correlation_id,
                "endpoint": endpoint,
                "total_attempts": total_attempts,
            }
        )
        return self


class NetworkError(UpstreamError):
    """Connection, DNS or other transport-level failure."""

    kind = ErrorKind.NETWORK


class RequestTimeoutError(UpstreamError):
    """
    An attempt or the whole call exceeded its deadline.

    Per-attempt timeouts are retried; a call-level timeout is raised with
    `retryable=False` because the caller's budget is gone.
    """

    kind = ErrorKind.TIMEOUT

    def __init__(self, message: str, retryable: bool = True, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.retryable = retryable


class RateLimitedError(UpstreamError):
    """Upstream answered 429."""

    kind = ErrorKind.RATE_LIMITED


class ServerError(UpstreamError):
    """Upstream answered 5xx."""

    kind = ErrorKind.SERVER_ERROR


class ClientError(UpstreamError):
    """
    Request was rejected as malformed, unauthorized or invalid (4xx).

    Never retried: sending the same request again gives the same answer.
    """

    kind = ErrorKind.CLIENT_ERROR
    retryable = False


class UnclassifiedError(UpstreamError):
    """Failure that matched no known pattern."""

    kind = ErrorKind.TERMINAL

    def __init__(self, message: str, retryable: bool = True, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.retryable = retryable


class CircuitOpenError(UpstreamError):
    """Raised when execution is attempted on an OPEN circuit."""

    kind = ErrorKind.CIRCUIT_OPEN
    retryable = False

    def __init__(
        self,
        circuit_name: str,
        state: str,
        retry_after: float,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            f"Circuit breaker '{circuit_name}' is {state.upper()}. Request rejected.",
            **kwargs,
        )
        self.circuit_name = circuit_name
        self.state = state
        self.retry_after = retry_after


ERROR_TYPES: dict[ErrorKind, type[UpstreamError]] = {
    ErrorKind.NETWORK: NetworkError,
    ErrorKind.TIMEOUT: RequestTimeoutError,
    ErrorKind.RATE_LIMITED: RateLimitedError,
    ErrorKind.SERVER_ERROR: ServerError,
    ErrorKind.CLIENT_ERROR: ClientError,
    ErrorKind.TERMINAL: UnclassifiedError,
}
