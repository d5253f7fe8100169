"""
Configuration management for Breakwater.

Handles loading configuration from environment variables and validation.
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any, Callable, TypeVar

from breakwater.core.exceptions import ConfigurationError

if TYPE_CHECKING:
    from breakwater.resilience.backoff import BackoffConfig
    from breakwater.resilience.circuit import CircuitBreakerConfig

T = TypeVar("T")

ENV_PREFIX = "BREAKWATER_"


def _get_env_var(name: str, default: str | None = None, required: bool = False) -> str | None:
    """Get environment variable with optional default."""
    value = os.environ.get(name, default)
    if required and not value:
        raise ConfigurationError(f"Required environment variable {name} is not set")
    return value


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _env_value(
    overrides: dict[str, Any],
    field_name: str,
    default: T,
    parse: Callable[[str], T],
) -> T:
    """Resolve a field from overrides, then BREAKWATER_<FIELD>, then default."""
    if field_name in overrides and overrides[field_name] is not None:
        return overrides[field_name]
    env_name = f"{ENV_PREFIX}{field_name.upper()}"
    raw = _get_env_var(env_name)
    if raw is None or raw == "":
        return default
    try:
        return parse(raw)
    except ValueError as e:
        raise ConfigurationError(
            f"Invalid value for {env_name}: {raw!r}", details={"error": str(e)}
        ) from e


@dataclass(frozen=True)
class Config:
    """Resilience and transport configuration."""

    # Circuit breaker
    failure_threshold: int = 5
    reset_timeout: float = 60.0  # Seconds OPEN before a probe is allowed
    monitoring_period: float = 120.0  # Rolling window for CLOSED-state failures
    half_open_max_calls: int = 3

    # Backoff (seconds)
    backoff_base: float = 1.0
    backoff_max: float = 30.0
    backoff_multiplier: float = 2.0
    backoff_jitter: bool = True

    # Retry loop
    retry_attempts: int = 3  # Retries after the first attempt
    per_attempt_timeout: float = 30.0
    min_inter_attempt_interval: float = 0.1
    call_timeout: float | None = None

    # Transport
    base_url: str = ""
    api_key: str | None = None
    user_agent: str = "Breakwater/0.1"
    correlation_header: str = "X-Request-ID"

    # Policy: when False, non-retryable client errors do not trip the breaker
    count_client_errors: bool = True

    log_level: str = "INFO"
    log_json: bool = False

    def __post_init__(self) -> None:
        if self.retry_attempts < 0:
            raise ConfigurationError("retry_attempts cannot be negative")
        if self.per_attempt_timeout <= 0:
            raise ConfigurationError("per_attempt_timeout must be positive")
        if self.min_inter_attempt_interval < 0:
            raise ConfigurationError("min_inter_attempt_interval cannot be negative")
        if self.call_timeout is not None and self.call_timeout <= 0:
            raise ConfigurationError("call_timeout must be positive")
        # Breaker and backoff ranges are validated by their own configs
        self.circuit_breaker_config()
        self.backoff_config()

    @property
    def max_attempts(self) -> int:
        """Total transport invocations allowed for one call."""
        return self.retry_attempts + 1

    def circuit_breaker_config(self) -> CircuitBreakerConfig:
        from breakwater.resilience.circuit import CircuitBreakerConfig

        return CircuitBreakerConfig(
            failure_threshold=self.failure_threshold,
            reset_timeout=self.reset_timeout,
            monitoring_period=self.monitoring_period,
            half_open_max_calls=self.half_open_max_calls,
        )

    def backoff_config(self) -> BackoffConfig:
        from breakwater.resilience.backoff import BackoffConfig

        return BackoffConfig(
            base_delay=self.backoff_base,
            max_delay=self.backoff_max,
            multiplier=self.backoff_multiplier,
            jitter=self.backoff_jitter,
        )

    @classmethod
    def from_env(cls, **overrides: Any) -> Config:
        """Load configuration from BREAKWATER_* environment variables."""
        return cls(
            failure_threshold=_env_value(overrides, "failure_threshold", cls.failure_threshold, int),
            reset_timeout=_env_value(overrides, "reset_timeout", cls.reset_timeout, float),
            monitoring_period=_env_value(
                overrides, "monitoring_period", cls.monitoring_period, float
            ),
            half_open_max_calls=_env_value(
                overrides, "half_open_max_calls", cls.half_open_max_calls, int
            ),
            backoff_base=_env_value(overrides, "backoff_base", cls.backoff_base, float),
            backoff_max=_env_value(overrides, "backoff_max", cls.backoff_max, float),
            backoff_multiplier=_env_value(
                overrides, "backoff_multiplier", cls.backoff_multiplier, float
            ),
            backoff_jitter=_env_value(overrides, "backoff_jitter", cls.backoff_jitter, _parse_bool),
            retry_attempts=_env_value(overrides, "retry_attempts", cls.retry_attempts, int),
            per_attempt_timeout=_env_value(
                overrides, "per_attempt_timeout", cls.per_attempt_timeout, float
            ),
            min_inter_attempt_interval=_env_value(
                overrides, "min_inter_attempt_interval", cls.min_inter_attempt_interval, float
            ),
            call_timeout=_env_value(overrides, "call_timeout", cls.call_timeout, float),
            base_url=_env_value(overrides, "base_url", cls.base_url, str),
            api_key=_env_value(overrides, "api_key", cls.api_key, str),
            user_agent=_env_value(overrides, "user_agent", cls.user_agent, str),
            correlation_header=_env_value(
                overrides, "correlation_header", cls.correlation_header, str
            ),
            count_client_errors=_env_value(
                overrides, "count_client_errors", cls.count_client_errors, _parse_bool
            ),
            log_level=_env_value(overrides, "log_level", cls.log_level, str),
            log_json=_env_value(overrides, "log_json", cls.log_json, _parse_bool),
        )

    def with_updates(self, **updates: Any) -> Config:
        """Create a new Config with updated values."""
        current = asdict(self)
        current.update(updates)
        return Config(**current)

    def masked_api_key(self) -> str:
        """Return API key with most characters masked for safe logging."""
        if not self.api_key:
            return ""
        if len(self.api_key) <= 8:
            return "****"
        return self.api_key[:4] + "..." + self.api_key[-4:]
