from __future__ import annotations

import platform
from typing import Any, Mapping, Optional

import httpx
from loguru import logger

from error_relay.delivery.payloads import SDK_NAME, SDK_VERSION

from .errors import HttpStatusError, map_http_error


class HttpTransport:
    """POSTs JSON payloads to the collector endpoint.

    Raises a ``TransportError`` subclass on anything but a 2xx response, so
    the retry policy can classify it.
    """

    def __init__(
        self,
        endpoint: str,
        *,
        timeout_sec: float = 5.0,
        headers: Optional[Mapping[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.endpoint = endpoint
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_sec)
        self._headers = {
            "Content-Type": "application/json",
            "User-Agent": f"{SDK_NAME}/{SDK_VERSION} (Python {platform.python_version()})",
            **(headers or {}),
        }

    async def send(self, payload: Mapping[str, Any]) -> None:
        try:
            resp = await self._client.post(self.endpoint, json=dict(payload), headers=self._headers)
        except httpx.HTTPError as e:
            raise map_http_error(e) from e

        if not resp.is_success:
            raise HttpStatusError(resp.status_code, resp.text)
        logger.debug(f"POST {self.endpoint} -> {resp.status_code}")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "HttpTransport":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()
