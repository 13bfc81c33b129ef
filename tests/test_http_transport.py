from __future__ import annotations

import base64
import json

import httpx
import pytest

from adapters.http_client import HttpxTransport, build_async_client, build_query_string
from core.config import AppSettings
from core.domain.models import HttpMethod, TransportRequest


def _settings() -> AppSettings:
    return AppSettings(api_host="https://api.example.test/", user_agent="fintoc-cli/test")


def _transport(handler) -> tuple[HttpxTransport, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def record(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    settings = _settings()
    client = build_async_client(settings, transport=httpx.MockTransport(record))
    return HttpxTransport(settings, client=client), seen


def test_query_string_rails_encoding():
    query = build_query_string(
        {
            "mode": "live",
            "ids": ["a", "b"],
            "filter": {"status": "ok", "n": 2},
            "skip": None,
            "flag": True,
        }
    )
    assert query == "?mode=live&ids[]=a&ids[]=b&filter[status]=ok&filter[n]=2&flag=true"


def test_query_string_empty():
    assert build_query_string(None) == ""
    assert build_query_string({}) == ""
    assert build_query_string({"x": None}) == ""


def test_query_string_escapes_values():
    assert build_query_string({"q": "a b&c"}) == "?q=a%20b%26c"


@pytest.mark.asyncio
async def test_get_sends_headers_and_query_without_body():
    transport, seen = _transport(lambda r: httpx.Response(200, json={"data": [1]}))

    response = await transport.send(
        TransportRequest(
            method=HttpMethod.GET,
            path="/internal/v2/dashboard/transfers",
            credential="tok_1",
            query={"mode": "live", "ids": ["x"]},
            body={"ignored": True},
        )
    )

    assert response.status == 200
    assert response.body == {"data": [1]}
    [request] = seen
    assert request.method == "GET"
    assert request.url.host == "api.example.test"
    assert request.url.path == "/internal/v2/dashboard/transfers"
    assert request.url.params["mode"] == "live"
    assert request.url.params.get_list("ids[]") == ["x"]
    assert request.headers["X-Session-Token"] == "tok_1"
    assert request.headers["Content-Type"] == "application/json"
    assert request.headers["User-Agent"] == "fintoc-cli/test"
    assert request.content == b""


@pytest.mark.asyncio
async def test_post_sends_json_body():
    transport, seen = _transport(lambda r: httpx.Response(201, json={"id": "ti_1"}))

    response = await transport.send(
        TransportRequest(
            method=HttpMethod.POST,
            path="/internal/v2/dashboard/transfer_intents",
            credential="tok_1",
            body={"amount": 1000, "counterparty": {"holder_name": "Ana"}},
        )
    )

    assert response.status == 201
    assert json.loads(seen[0].content) == {"amount": 1000, "counterparty": {"holder_name": "Ana"}}


@pytest.mark.asyncio
async def test_non_2xx_is_returned_not_raised():
    transport, _ = _transport(lambda r: httpx.Response(422, json={"error": {"message": "bad"}}))
    response = await transport.send(
        TransportRequest(method=HttpMethod.DELETE, path="/x", credential="t")
    )
    assert response.status == 422
    assert response.body == {"error": {"message": "bad"}}


@pytest.mark.asyncio
async def test_non_json_body_falls_back_to_text():
    transport, _ = _transport(lambda r: httpx.Response(200, text="plain text"))
    response = await transport.send(TransportRequest(method=HttpMethod.GET, path="/x", credential="t"))
    assert response.body == "plain text"


@pytest.mark.asyncio
async def test_binary_response_is_base64():
    pdf = b"%PDF-1.4\x00\xff"
    transport, _ = _transport(
        lambda r: httpx.Response(200, content=pdf, headers={"Content-Type": "application/pdf"})
    )
    response = await transport.send(
        TransportRequest(method=HttpMethod.GET, path="/receipt", credential="t", response_binary=True)
    )
    assert base64.b64decode(response.body) == pdf
    assert response.headers["content-type"] == "application/pdf"


@pytest.mark.asyncio
async def test_network_error_propagates():
    def boom(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    transport, _ = _transport(boom)
    with pytest.raises(httpx.ConnectError):
        await transport.send(TransportRequest(method=HttpMethod.GET, path="/x", credential="t"))
