"""
httpx-backed transport.

Sends JSON bodies, adds the standard client headers and turns non-success
responses into RemoteError carrying the structured error payload.
"""

from __future__ import annotations

from typing import Any, Mapping

import httpx

from breakwater.core.exceptions import RemoteError
from breakwater.core.logging import get_logger
from breakwater.core.types import ErrorPayload
from breakwater.transport.base import Response


def parse_error_payload(response: httpx.Response) -> ErrorPayload:
    """Extract `{code?, message, status}` from an error response."""
    message = response.reason_phrase or f"HTTP {response.status_code}"
    code = None
    try:
        data = response.json()
    except ValueError:
        data = None

    if isinstance(data, dict):
        message = str(data.get("message") or data.get("error") or message)
        raw_code = data.get("code")
        code = str(raw_code) if raw_code is not None else None
    elif response.text:
        message = f"{message}: {response.text[:200]}"

    return ErrorPayload(message=message, code=code, status=response.status_code)


class HttpxTransport:
    """Transport implementation on top of httpx.AsyncClient."""

    def __init__(
        self,
        base_url: str = "",
        api_key: str | None = None,
        user_agent: str = "Breakwater/0.1",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize the transport.

        Args:
            base_url: Prefix for every endpoint
            api_key: Sent as a Bearer token when set
            user_agent: User-Agent header value
            client: Pre-built client (tests pass one with MockTransport)
        """
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._user_agent = user_agent
        self._http_client = client
        self._owns_client = client is None
        self._logger = get_logger("transport.http")

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient()
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    def _build_headers(self, headers: Mapping[str, str]) -> dict[str, str]:
        result = {
            "Content-Type": "application/json",
            "User-Agent": self._user_agent,
        }
        if self._api_key:
            result["Authorization"] = f"Bearer {self._api_key}"
        result.update(headers)
        return result

    async def execute(
        self,
        endpoint: str,
        method: str,
        headers: Mapping[str, str],
        body: Any,
        deadline: float,
    ) -> Response:
        client = await self._get_client()
        url = f"{self._base_url}{endpoint}"
        self._logger.debug(f"{method} {url}")

        kwargs: dict[str, Any] = {
            "headers": self._build_headers(headers),
            "timeout": deadline,
        }
        if isinstance(body, (bytes, str)):
            kwargs["content"] = body
        elif body is not None:
            kwargs["json"] = body

        response = await client.request(method, url, **kwargs)
        if response.is_error:
            raise RemoteError(
                parse_error_payload(response),
                details={"endpoint": endpoint, "method": method},
            )

        return Response(
            status=response.status_code,
            headers=dict(response.headers),
            content=response.content,
        )
