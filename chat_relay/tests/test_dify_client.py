import asyncio
import json

import httpx
import pytest

from chat_relay.domain.exceptions import ApiError, ConfigurationError, NetworkError
from chat_relay.domain.models import ChatRequest
from chat_relay.providers import create_provider
from chat_relay.providers.dify_client import DifyClient


class SettingsStub:
    dify_api_key = "app-0123456789"
    dify_base_url = "https://dify.test/v1/"
    http_timeout = 1.0


def test_dify_client_blocking_payload():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["auth"] = request.headers["authorization"]
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"answer": "ok", "conversation_id": "c-1"})

    dc = DifyClient(SettingsStub(), transport=httpx.MockTransport(handler))
    req = ChatRequest(query="hi", user="u-1")
    data = asyncio.run(dc.chat(req))

    assert data["answer"] == "ok"
    assert captured["url"] == "https://dify.test/v1/chat-messages"
    assert captured["auth"] == "Bearer app-0123456789"
    assert captured["body"] == {
        "inputs": {},
        "query": "hi",
        "response_mode": "blocking",
        "conversation_id": "",
        "user": "u-1",
    }


def test_dify_client_forwards_conversation_id():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"answer": "ok"})

    dc = DifyClient(SettingsStub(), transport=httpx.MockTransport(handler))
    asyncio.run(dc.chat(ChatRequest(query="again", conversation_id="c-42", user="u")))
    assert captured["body"]["conversation_id"] == "c-42"


def test_dify_client_error_status():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    dc = DifyClient(SettingsStub(), transport=httpx.MockTransport(handler))
    with pytest.raises(ApiError) as exc:
        asyncio.run(dc.chat(ChatRequest(query="hi", user="u")))
    assert exc.value.extra["upstream_status"] == 500
    assert exc.value.http_status == 503


def test_dify_client_network_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    dc = DifyClient(SettingsStub(), transport=httpx.MockTransport(handler))
    with pytest.raises(NetworkError):
        asyncio.run(dc.chat(ChatRequest(query="hi", user="u")))


def test_dify_client_missing_key():
    class NoKey(SettingsStub):
        dify_api_key = None

    dc = DifyClient(NoKey(), transport=httpx.MockTransport(lambda r: httpx.Response(200, json={})))
    with pytest.raises(ConfigurationError) as exc:
        asyncio.run(dc.chat(ChatRequest(query="hi", user="u")))
    assert exc.value.code == "MISSING_API_KEY"


def test_dify_client_stream_passes_bytes_through():
    raw = (
        b'data: {"event": "message", "answer": "\xe4\xbd\xa0"}\n\n'
        b": keep-alive\n\n"
        b'data: {"event": "message_end", "conversation_id": "c-1"}\n\n'
    )
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["mode"] = json.loads(request.content)["response_mode"]
        async def body():
            yield raw

        return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=body())

    dc = DifyClient(SettingsStub(), transport=httpx.MockTransport(handler))

    async def run():
        stream = await dc.open_stream(ChatRequest(query="hi", response_mode="streaming", user="u"))
        body = b"".join([chunk async for chunk in stream.aiter_raw()])
        await stream.aclose()
        return stream, body

    stream, body = asyncio.run(run())
    assert seen["mode"] == "streaming"
    assert body == raw
    assert stream.content_type == "text/event-stream"


def test_dify_client_stream_error_status_raises_before_streaming():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, text="slow down")

    dc = DifyClient(SettingsStub(), transport=httpx.MockTransport(handler))
    with pytest.raises(ApiError) as exc:
        asyncio.run(dc.open_stream(ChatRequest(query="hi", response_mode="streaming", user="u")))
    assert exc.value.extra["upstream_status"] == 429
    assert "slow down" in exc.value.message


def test_create_provider_default():
    provider = create_provider(cfg=SettingsStub())
    assert isinstance(provider, DifyClient)
    with pytest.raises(KeyError):
        create_provider("gemini", cfg=SettingsStub())
