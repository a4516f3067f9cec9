"""
Error Relay Client Library

Captures exceptions and messages in a host application and delivers them to
a remote collector through the ``error_relay`` delivery pipeline.

Usage:
    from relay_client import ErrorReporter
    from error_relay import RelaySettings

    async with ErrorReporter(RelaySettings(endpoint_url="https://...", project_name="api")) as r:
        r.set_user(id=42)
        r.add_breadcrumb("checkout started", category="user")
        await r.capture_exception(exc, context={"cart": 7})
"""

from .reporter import ErrorReporter, BeforeSend
from .transport import HttpTransport
from .errors import (
    TransportError,
    TransportConnectionError,
    TransportTimeout,
    HttpStatusError,
    map_http_error,
)
from .compression import CompressionService, CompressionResult, CompressionError
from .sanitize import Sanitizer, REDACTED
from .breadcrumbs import BreadcrumbTrail
from .context import RequestLike, extract_request_data

__version__ = "1.0.0"
__all__ = [
    "ErrorReporter",
    "BeforeSend",
    "HttpTransport",
    "TransportError",
    "TransportConnectionError",
    "TransportTimeout",
    "HttpStatusError",
    "map_http_error",
    "CompressionService",
    "CompressionResult",
    "CompressionError",
    "Sanitizer",
    "REDACTED",
    "BreadcrumbTrail",
    "RequestLike",
    "extract_request_data",
]
