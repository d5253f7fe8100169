"""
Breakwater - Resilience layer for flaky upstream endpoints.

Circuit breaking, exponential backoff and classified retries around any
async transport.

Usage:
    >>> from breakwater import Config, UpstreamClient
    >>>
    >>> async with UpstreamClient(Config(base_url="https://rest.example.org")) as client:
    ...     response = await client.get("/v1/accounts/0x01")

Lower level:
    >>> from breakwater import CircuitBreaker, RetryOrchestrator
    >>>
    >>> orchestrator = RetryOrchestrator(my_transport, breaker=CircuitBreaker("rpc"))
    >>> response = await orchestrator.call(RequestSpec("/v1/ping"))
"""

from breakwater.client import UpstreamClient
from breakwater.core.clock import Clock, MonotonicClock
from breakwater.core.config import Config
from breakwater.core.exceptions import (
    BreakwaterError,
    CircuitOpenError,
    ClientError,
    ConfigurationError,
    NetworkError,
    RateLimitedError,
    RemoteError,
    RequestTimeoutError,
    ServerError,
    UnclassifiedError,
    UpstreamError,
)
from breakwater.core.logging import JsonFormatter, call_context, configure_logging, get_logger
from breakwater.core.types import ErrorKind, ErrorPayload, ErrorTaxonomyEntry, RetryContext
from breakwater.resilience import (
    BackoffConfig,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitMetrics,
    CircuitState,
    ErrorClassifier,
    ExponentialBackoff,
    MetricsRecorder,
    MetricsSnapshot,
    MinIntervalRateLimiter,
    RetryOrchestrator,
    classify,
)
from breakwater.transport import HttpxTransport, RequestSpec, Response, Transport

__version__ = "0.1.0"

__all__ = [
    # Client
    "UpstreamClient",
    "Config",
    # Resilience
    "BackoffConfig",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitMetrics",
    "CircuitState",
    "ErrorClassifier",
    "ExponentialBackoff",
    "MetricsRecorder",
    "MetricsSnapshot",
    "MinIntervalRateLimiter",
    "RetryOrchestrator",
    "classify",
    # Transport
    "HttpxTransport",
    "RequestSpec",
    "Response",
    "Transport",
    # Types
    "ErrorKind",
    "ErrorPayload",
    "ErrorTaxonomyEntry",
    "RetryContext",
    # Time
    "Clock",
    "MonotonicClock",
    # Logging
    "JsonFormatter",
    "call_context",
    "configure_logging",
    "get_logger",
    # Exceptions
    "BreakwaterError",
    "CircuitOpenError",
    "ClientError",
    "ConfigurationError",
    "NetworkError",
    "RateLimitedError",
    "RemoteError",
    "RequestTimeoutError",
    "ServerError",
    "UnclassifiedError",
    "UpstreamError",
]
