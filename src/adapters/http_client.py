"""Wrapper de httpx y transporte hacia la API del dashboard.

`build_async_client` centralizes timeouts and headers so every call behaves
the same; `HttpxTransport` implements `core.interfaces.transport.Transport`.
"""

from __future__ import annotations

import base64
import json
from typing import Any
from urllib.parse import quote

import httpx

from core.config import AppSettings
from core.domain.models import HttpMethod, TransportRequest, TransportResponse


def build_async_client(
    settings: AppSettings | None = None,
    *,
    extra_headers: dict[str, str] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Crea un `httpx.AsyncClient` con defaults seguros.

    `transport` exists for tests (`httpx.MockTransport`).
    """

    settings = settings or AppSettings()
    headers: dict[str, str] = {
        "User-Agent": settings.user_agent,
        "Accept": "application/json",
    }
    if extra_headers:
        headers.update(extra_headers)
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.http_timeout_seconds),
        follow_redirects=True,
        headers=headers,
        transport=transport,
    )


def _scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_query_string(params: dict[str, Any] | None) -> str:
    """Rails-style query encoding.

    - scalars: `key=value`
    - lists: `key[]=item` per item
    - maps: `key[sub]=value` per entry
    - `None` values are skipped
    """

    if not params:
        return ""

    parts: list[str] = []
    for key, value in params.items():
        if value is None:
            continue
        k = quote(str(key), safe="")
        if isinstance(value, (list, tuple)):
            for item in value:
                parts.append(f"{k}[]={quote(_scalar(item), safe='')}")
        elif isinstance(value, dict):
            for sub_key, sub_value in value.items():
                parts.append(f"{k}[{quote(str(sub_key), safe='')}]={quote(_scalar(sub_value), safe='')}")
        else:
            parts.append(f"{k}={quote(_scalar(value), safe='')}")

    return "?" + "&".join(parts) if parts else ""


def _decode_body(response: httpx.Response, *, binary: bool) -> Any:
    if binary:
        return base64.b64encode(response.content).decode("ascii")
    text = response.text
    try:
        return json.loads(text)
    except ValueError:
        return text


class HttpxTransport:
    """Transport over httpx.

    Without an injected client, a short-lived client is opened per call.
    """

    def __init__(
        self,
        settings: AppSettings | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings or AppSettings()
        self._client = client

    @property
    def base_url(self) -> str:
        return self._settings.api_host.rstrip("/")

    def build_url(self, request: TransportRequest) -> str:
        return f"{self.base_url}{request.path}{build_query_string(request.query)}"

    async def send(self, request: TransportRequest) -> TransportResponse:
        url = self.build_url(request)
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "X-Session-Token": request.credential,
        }
        content = None
        if request.body and request.method is not HttpMethod.GET:
            content = json.dumps(request.body)

        if self._client is not None:
            response = await self._client.request(request.method.value, url, headers=headers, content=content)
        else:
            async with build_async_client(self._settings) as client:
                response = await client.request(request.method.value, url, headers=headers, content=content)

        return TransportResponse(
            status=response.status_code,
            body=_decode_body(response, binary=request.response_binary),
            headers=dict(response.headers),
        )
