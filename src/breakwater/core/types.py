"""
Type definitions for Breakwater.

Enums and data classes shared by the classifier, the retry orchestrator
and the transports.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping


class ErrorKind(str, Enum):
    """Failure taxonomy produced by the error classifier."""

    NETWORK = "network"
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    CLIENT_ERROR = "client_error"
    SERVER_ERROR = "server_error"
    TERMINAL = "terminal"
    CIRCUIT_OPEN = "circuit_open"  # Only ever produced for CircuitOpenError


@dataclass(frozen=True)
class ErrorTaxonomyEntry:
    """Classification verdict for a single failure."""

    kind: ErrorKind
    retryable: bool


@dataclass(frozen=True)
class ErrorPayload:
    """Structured error returned by the upstream endpoint."""

    message: str
    code: str | None = None
    status: int | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ErrorPayload:
        """Build a payload from a `{code?, message, status?}` mapping."""
        status = data.get("status")
        code = data.get("code")
        return cls(
            message=str(data.get("message") or data.get("error") or ""),
            code=str(code) if code is not None else None,
            status=int(status) if status is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"message": self.message}
        if self.code is not None:
            result["code"] = self.code
        if self.status is not None:
            result["status"] = self.status
        return result


@dataclass
class RetryContext:
    """
    Per-call retry state.

    Created once for each top-level call and threaded through every attempt.
    Never shared between concurrent calls.
    """

    correlation_id: str
    endpoint: str
    method: str
    max_attempts: int
    start_time: float
    attempt: int = 0
    attempts_made: int = 0
    last_error: BaseException | None = None
    last_entry: ErrorTaxonomyEntry | None = None

    @property
    def total_attempts(self) -> int:
        return self.attempts_made

    @property
    def is_last_attempt(self) -> bool:
        return self.attempt >= self.max_attempts - 1
