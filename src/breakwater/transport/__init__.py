"""Transports executing single upstream attempts."""

from breakwater.transport.base import RequestSpec, Response, Transport
from breakwater.transport.http import HttpxTransport, parse_error_payload

__all__ = [
    "HttpxTransport",
    "RequestSpec",
    "Response",
    "Transport",
    "parse_error_payload",
]
