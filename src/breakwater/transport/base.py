"""
Abstract transport shape consumed by the retry orchestrator.

The orchestrator knows nothing about wire formats: it hands a transport the
endpoint, method, headers, body and a per-attempt deadline, and gets back a
Response or an exception.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, runtime_checkable


@dataclass(frozen=True)
class RequestSpec:
    """One logical upstream call."""

    endpoint: str
    method: str = "GET"
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Any = None
    # Call-level deadline in seconds covering every attempt and backoff
    timeout: float | None = None


@dataclass
class Response:
    """Transport-neutral response."""

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    content: bytes = b""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 400

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.content) if self.content else None


@runtime_checkable
class Transport(Protocol):
    """Executes a single attempt. Raises on failure."""

    async def execute(
        self,
        endpoint: str,
        method: str,
        headers: Mapping[str, str],
        body: Any,
        deadline: float,
    ) -> Response: ...
