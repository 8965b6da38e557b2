import httpx
import pytest
import respx
from httpx import Response

from relay.app.services.forwarder import (
    Forwarder,
    build_target_url,
    filter_request_headers,
    relay_response_headers,
    target_host,
)


def test_build_target_url():
    assert (
        build_target_url("/api.groq.com/openai/v1/chat/completions")
        == "https://api.groq.com/openai/v1/chat/completions"
    )
    assert build_target_url("/example.com/search", "q=1&x=2") == "https://example.com/search?q=1&x=2"
    assert build_target_url("/localhost:9000/x", scheme="http") == "http://localhost:9000/x"


def test_target_host():
    assert target_host("https://api.groq.com/openai/v1?x=1") == "api.groq.com"
    assert target_host("https://example.com?x=1") == "example.com"


def test_filter_request_headers_keeps_allow_list_only():
    headers = [
        ("Accept", "application/json"),
        ("Content-Type", "application/json"),
        ("Authorization", "Bearer k"),
        ("Cookie", "session=1"),
        ("User-Agent", "curl"),
        ("X-Forwarded-For", "10.0.0.1"),
        ("Host", "proxy.local"),
    ]
    assert filter_request_headers(headers) == {
        "Accept": "application/json",
        "Content-Type": "application/json",
        "Authorization": "Bearer k",
    }


def test_relay_response_headers_drops_hop_by_hop():
    headers = httpx.Headers(
        [
            ("content-type", "text/plain"),
            ("content-length", "5"),
            ("content-encoding", "gzip"),
            ("connection", "keep-alive"),
            ("set-cookie", "a=1"),
            ("set-cookie", "b=2"),
        ]
    )
    assert relay_response_headers(headers) == [
        ("content-type", "text/plain"),
        ("set-cookie", "a=1"),
        ("set-cookie", "b=2"),
    ]


@pytest.mark.asyncio
@respx.mock
async def test_forwarder_calls_upstream():
    route = respx.post("https://api.groq.com/openai/v1/chat/completions").mock(
        return_value=Response(200, json={"id": "x", "choices": []})
    )
    async with httpx.AsyncClient() as client:
        result = await Forwarder().forward(
            client,
            "POST",
            "/api.groq.com/openai/v1/chat/completions",
            "",
            {"Authorization": "Bearer k", "Content-Type": "application/json", "Cookie": "c=1"},
            b'{"messages": []}',
        )
        assert result.error is None
        await result.response.aread()
        assert result.response.json()["id"] == "x"
        await result.response.aclose()

    sent = route.calls.last.request
    assert sent.headers["authorization"] == "Bearer k"
    assert "cookie" not in sent.headers
    assert sent.content == b'{"messages": []}'


@pytest.mark.asyncio
@respx.mock
async def test_get_requests_carry_no_body():
    route = respx.get("https://example.com/data").mock(return_value=Response(200, text="ok"))
    async with httpx.AsyncClient() as client:
        result = await Forwarder().forward(client, "GET", "/example.com/data", "", {}, b"ignored")
        await result.response.aclose()

    assert route.calls.last.request.content == b""


@pytest.mark.asyncio
@respx.mock
async def test_transport_failure_becomes_upstream_unreachable():
    respx.get("https://unreachable.invalid/x").mock(side_effect=httpx.ConnectError("dns failure"))
    async with httpx.AsyncClient() as client:
        result = await Forwarder().forward(client, "GET", "/unreachable.invalid/x", "", {}, b"")

    assert result.response is None
    assert result.error.status_code == 500
    assert result.error.error == "upstream_unreachable"
    assert "dns failure" in result.error.detail
    assert "dns failure" not in result.error.message


@pytest.mark.asyncio
@respx.mock
async def test_timeout_becomes_upstream_unreachable():
    respx.post("https://slow.example/x").mock(side_effect=httpx.ReadTimeout("timed out"))
    async with httpx.AsyncClient() as client:
        result = await Forwarder().forward(client, "POST", "/slow.example/x", "", {}, b"{}")

    assert result.error is not None
    assert result.error.error == "upstream_unreachable"

