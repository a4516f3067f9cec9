"""
Unit tests for the httpx transport and error mapping.
"""

import json

import httpx
import pytest

from error_relay.delivery import default_retry_classifier
from relay_client import (
    HttpStatusError,
    HttpTransport,
    TransportConnectionError,
    TransportError,
    TransportTimeout,
    map_http_error,
)


def _transport(handler) -> HttpTransport:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpTransport("https://collector.test/errors", client=client)


@pytest.mark.asyncio
async def test_posts_json_with_headers():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["content_type"] = request.headers["content-type"]
        seen["user_agent"] = request.headers["user-agent"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(202)

    t = _transport(handler)
    await t.send({"message": "boom", "project": "p"})
    await t._client.aclose()

    assert seen["method"] == "POST"
    assert seen["url"] == "https://collector.test/errors"
    assert seen["content_type"] == "application/json"
    assert seen["user_agent"].startswith("error-relay-python/")
    assert seen["body"] == {"message": "boom", "project": "p"}


@pytest.mark.asyncio
@pytest.mark.parametrize("status, retryable", [(503, True), (429, True), (400, False), (500, False)])
async def test_non_2xx_raises_status_error(status, retryable):
    t = _transport(lambda request: httpx.Response(status, text="nope"))

    with pytest.raises(HttpStatusError) as ei:
        await t.send({"message": "x"})
    await t._client.aclose()

    assert ei.value.status_code == status
    assert default_retry_classifier(ei.value) is retryable


@pytest.mark.asyncio
async def test_connect_error_maps_to_connection_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    t = _transport(handler)
    with pytest.raises(TransportConnectionError) as ei:
        await t.send({"message": "x"})
    await t._client.aclose()

    assert isinstance(ei.value, ConnectionError)
    assert default_retry_classifier(ei.value)


@pytest.mark.asyncio
async def test_timeout_maps_to_timeout_error():
    def handler(request):
        raise httpx.ReadTimeout("read timed out", request=request)

    t = _transport(handler)
    with pytest.raises(TransportTimeout) as ei:
        await t.send({"message": "x"})
    await t._client.aclose()

    assert isinstance(ei.value, TimeoutError)


def test_map_http_error_passthrough_and_fallback():
    original = HttpStatusError(418)
    assert map_http_error(original) is original

    mapped = map_http_error(RuntimeError("weird"))
    assert type(mapped) is TransportError
    assert "RuntimeError" in str(mapped)


@pytest.mark.asyncio
async def test_owned_client_closed_on_exit():
    async with HttpTransport("https://collector.test/errors") as t:
        assert not t._client.is_closed
    assert t._client.is_closed
