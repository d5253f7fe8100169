"""
Resilience Layer for Breakwater.

Provides the Circuit Breaker, Exponential Backoff, Error Classification
and the Retry Orchestrator that composes them.
"""

from .backoff import BackoffConfig, ExponentialBackoff
from .circuit import CircuitBreaker, CircuitBreakerConfig, CircuitMetrics, CircuitState
from .classifier import ErrorClassifier, classify
from .metrics import MetricsRecorder, MetricsSnapshot
from .ratelimit import MinIntervalRateLimiter
from .retry import RetryOrchestrator, new_correlation_id

__all__ = [
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
    "new_correlation_id",
]
