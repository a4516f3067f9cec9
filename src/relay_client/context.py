"""Adapter from host web-framework requests to ``RequestData``."""

from __future__ import annotations

from typing import Any, Mapping, Optional, Protocol, runtime_checkable

from error_relay.models import RequestData

STRIPPED_HEADERS = frozenset({"authorization", "cookie", "proxy-authorization", "set-cookie"})


@runtime_checkable
class RequestLike(Protocol):
    """Structural view of an incoming HTTP request.

    Framework request objects rarely match exactly; any attribute may be
    missing and is then skipped.
    """

    method: str
    url: Any
    headers: Mapping[str, str]
    query: Mapping[str, Any]
    body: Any
    ip: Optional[str]


def extract_request_data(request: Any) -> RequestData:
    headers = getattr(request, "headers", None)
    clean_headers = None
    user_agent = None
    if headers:
        clean_headers = {
            str(k): str(v) for k, v in dict(headers).items() if str(k).lower() not in STRIPPED_HEADERS
        }
        user_agent = next(
            (v for k, v in clean_headers.items() if k.lower() == "user-agent"), None
        )

    query = getattr(request, "query", None)
    body = getattr(request, "body", None)
    url = getattr(request, "url", None)

    return RequestData(
        url=str(url) if url is not None else None,
        method=getattr(request, "method", None),
        headers=clean_headers,
        query=dict(query) if query else None,
        body=dict(body) if isinstance(body, Mapping) else None,
        ip=getattr(request, "ip", None),
        user_agent=user_agent,
    )


def response_status(request: Any) -> Optional[int]:
    """Status code of the response attached to ``request``, if the framework exposes one."""
    status = getattr(request, "status_code", None)
    return status if isinstance(status, int) else None
