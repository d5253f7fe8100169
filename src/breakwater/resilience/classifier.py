"""
Error classification for retry decisions.

Maps any failure (exception, structured payload or payload dict) to an
ErrorTaxonomyEntry once, at the boundary, so the retry loop and the
circuit breaker never inspect raw error internals.

Rules, in priority order:
1. Explicit HTTP-like status: 429 and 5xx retry, other 4xx never do
2. Errors already classified by this library keep their kind
3. Timeout/abort exception types
4. Connection/DNS/transport exception types
5. Message heuristics
6. Everything else is TERMINAL but still retryable
"""

from __future__ import annotations

import asyncio
import re
from typing import Any, Mapping

import httpx

from breakwater.core.exceptions import (
    ERROR_TYPES,
    RemoteError,
    UnclassifiedError,
    UpstreamError,
)
from breakwater.core.types import ErrorKind, ErrorPayload, ErrorTaxonomyEntry

NETWORK = ErrorTaxonomyEntry(ErrorKind.NETWORK, retryable=True)
TIMEOUT = ErrorTaxonomyEntry(ErrorKind.TIMEOUT, retryable=True)
RATE_LIMITED = ErrorTaxonomyEntry(ErrorKind.RATE_LIMITED, retryable=True)
SERVER_ERROR = ErrorTaxonomyEntry(ErrorKind.SERVER_ERROR, retryable=True)
CLIENT_ERROR = ErrorTaxonomyEntry(ErrorKind.CLIENT_ERROR, retryable=False)
TERMINAL = ErrorTaxonomyEntry(ErrorKind.TERMINAL, retryable=True)
CANCELLED = ErrorTaxonomyEntry(ErrorKind.TERMINAL, retryable=False)

# Request-shaped failures reported without a status code
CLIENT_ERROR_MARKERS = (
    "bad request",
    "invalid script",
    "script execution failed",
    "authentication failed",
    "resource not found",
    "unauthorized",
    "forbidden",
)

RATE_LIMIT_MARKERS = ("rate limit", "too many requests", "throttl")

TIMEOUT_MARKERS = ("timeout", "timed out", "aborterror")

NETWORK_MARKERS = (
    "network",
    "fetch",
    "connection refused",
    "connection reset",
    "connection aborted",
    "connection error",
    "no route to host",
    "name resolution",
    "dns",
    "socket",
    "broken pipe",
)

_SERVER_STATUS_RE = re.compile(r"\b50[0234]\b")
_RATE_LIMIT_STATUS_RE = re.compile(r"\b429\b")
_CLIENT_STATUS_RE = re.compile(r"\b40[0134]\b")


def classify_status(status: int) -> ErrorTaxonomyEntry | None:
    """
    Classify an HTTP-like status code.

    Returns:
        Taxonomy entry, or None when the status says nothing about failure
    """
    if status == 429:
        return RATE_LIMITED
    if 500 <= status < 600:
        return SERVER_ERROR
    if 400 <= status < 500:
        return CLIENT_ERROR
    return None


def _status_of(error: Any) -> int | None:
    if isinstance(error, ErrorPayload):
        return error.status
    if isinstance(error, RemoteError):
        return error.status
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    if isinstance(error, UpstreamError) and error.kind in (
        ErrorKind.SERVER_ERROR,
        ErrorKind.CLIENT_ERROR,
        ErrorKind.RATE_LIMITED,
    ):
        return error.status
    return None


def _classify_message(message: str) -> ErrorTaxonomyEntry | None:
    text = message.lower()

    if any(m in text for m in CLIENT_ERROR_MARKERS):
        return CLIENT_ERROR
    if _RATE_LIMIT_STATUS_RE.search(text) or any(m in text for m in RATE_LIMIT_MARKERS):
        return RATE_LIMITED
    if _SERVER_STATUS_RE.search(text):
        return SERVER_ERROR
    if any(m in text for m in TIMEOUT_MARKERS):
        return TIMEOUT
    if any(m in text for m in NETWORK_MARKERS):
        return NETWORK
    if _CLIENT_STATUS_RE.search(text):
        return CLIENT_ERROR
    return None


class ErrorClassifier:
    """Pure mapping from a failure to an ErrorTaxonomyEntry."""

    def classify(self, error: BaseException | ErrorPayload | Mapping[str, Any]) -> ErrorTaxonomyEntry:
        """
        Classify a failure.

        Args:
            error: Exception, ErrorPayload, or a `{code?, message, status?}` mapping

        Returns:
            Taxonomy entry with kind and retry eligibility
        """
        if isinstance(error, Mapping):
            error = ErrorPayload.from_dict(error)

        status = _status_of(error)
        if status is not None:
            entry = classify_status(status)
            if entry is not None:
                return entry

        if isinstance(error, ErrorPayload):
            return _classify_message(f"{error.code or ''} {error.message}") or TERMINAL

        if isinstance(error, asyncio.CancelledError):
            return CANCELLED

        if isinstance(error, UpstreamError):
            return ErrorTaxonomyEntry(error.kind, error.retryable)

        if isinstance(error, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)):
            return TIMEOUT

        if isinstance(error, (httpx.TransportError, ConnectionError, OSError)):
            return NETWORK

        message = f"{type(error).__name__} {error}"
        if isinstance(error, RemoteError) and error.code:
            message = f"{message} {error.code}"
        return _classify_message(message) or TERMINAL

    def to_exception(
        self,
        entry: ErrorTaxonomyEntry,
        error: BaseException,
        correlation_id: str,
        endpoint: str,
        total_attempts: int,
    ) -> UpstreamError:
        """
        Build the typed, enriched error that terminates a call.

        Errors already of the right type are enriched in place.
        """
        if isinstance(error, UpstreamError) and error.kind == entry.kind:
            return error.enrich(correlation_id, endpoint, total_attempts)

        status = code = None
        if isinstance(error, RemoteError):
            status, code = error.status, error.code
        elif isinstance(error, httpx.HTTPStatusError):
            status = error.response.status_code

        message = str(error) or type(error).__name__
        error_type = ERROR_TYPES.get(entry.kind, UnclassifiedError)
        typed = error_type(message, status=status, code=code)
        typed.retryable = entry.retryable
        typed.details["cause"] = type(error).__name__
        return typed.enrich(correlation_id, endpoint, total_attempts)


default_classifier = ErrorClassifier()


def classify(error: BaseException | ErrorPayload | Mapping[str, Any]) -> ErrorTaxonomyEntry:
    """Classify with the default classifier."""
    return default_classifier.classify(error)
