"""
Custom exceptions for the relay client transport.

The retry classifier in ``error_relay.delivery.policy`` relies on these
shapes: connection and timeout failures subclass the builtin
ConnectionError / TimeoutError, HTTP failures carry ``status_code``.
"""

from __future__ import annotations

from typing import Optional

import httpx


class TransportError(Exception):
    """Base error for outbound report delivery."""

    pass


class TransportConnectionError(TransportError, ConnectionError):
    """Collector unreachable (DNS, refused, reset)."""

    pass


class TransportTimeout(TransportError, TimeoutError):
    """Connect/read/write timed out."""

    pass


class HttpStatusError(TransportError):
    """Collector answered with a non-2xx status."""

    def __init__(self, status_code: int, body: Optional[str] = None):
        super().__init__(f"HTTP {status_code}" + (f": {body[:200]}" if body else ""))
        self.status_code = status_code
        self.body = body


def map_http_error(e: Exception) -> TransportError:
    if isinstance(e, TransportError):
        return e
    if isinstance(e, httpx.HTTPStatusError):
        return HttpStatusError(e.response.status_code, e.response.text)
    if isinstance(e, httpx.TimeoutException):
        return TransportTimeout(str(e) or type(e).__name__)
    if isinstance(e, (httpx.NetworkError, httpx.ProxyError)):
        return TransportConnectionError(str(e) or type(e).__name__)
    return TransportError(f"{type(e).__name__}: {e}")
