import asyncio
import re

import pytest

from chat_relay.domain.exceptions import (
    AccessDeniedError,
    ApiError,
    ConfigurationError,
    NetworkError,
    UpstreamError,
    ValidationError,
)
from chat_relay.relay.canned import DEMO_RESPONSES, FALLBACK_RESPONSE
from chat_relay.relay.service import RelayService


class SettingsStub:
    dify_api_key = "app-0123456789"
    dify_base_url = "https://dify.test/v1"
    dify_user_prefix = "visitor"
    public_access = True
    demo_mode = False
    enable_fallback = False
    http_timeout = 1.0
    environment = "test"


class FakeStream:
    content_type = "text/event-stream"

    async def aiter_raw(self):
        yield b'data: {"event": "message_end"}\n\n'

    async def aclose(self):
        pass


class FakeUpstream:
    name = "fake"

    def __init__(self, error=None):
        self.error = error
        self.requests = []

    async def chat(self, req):
        self.requests.append(req)
        if self.error:
            raise self.error
        return {"answer": "upstream says hi", "conversation_id": "c-1", "message_id": "m-1", "created_at": 1}

    async def open_stream(self, req):
        self.requests.append(req)
        if self.error:
            raise self.error
        return FakeStream()


def _settings(**overrides):
    cfg = SettingsStub()
    for key, value in overrides.items():
        setattr(cfg, key, value)
    return cfg


def test_relay_blocking_passthrough():
    upstream = FakeUpstream()
    service = RelayService(_settings(), upstream=upstream)
    result = asyncio.run(service.relay("hello", conversation_id="c-0", user="u-1"))
    assert not result.streaming
    assert result.payload["answer"] == "upstream says hi"
    req = upstream.requests[0]
    assert req.conversation_id == "c-0"
    assert req.user == "u-1"
    assert req.response_mode == "blocking"


def test_relay_streaming_returns_stream():
    upstream = FakeUpstream()
    service = RelayService(_settings(), upstream=upstream)
    result = asyncio.run(service.relay("hello", response_mode="streaming"))
    assert result.streaming
    assert result.payload is None


@pytest.mark.parametrize("query", ["", "   ", "\n\t", None])
@pytest.mark.parametrize("mode", ["blocking", "streaming"])
def test_relay_rejects_empty_query(query, mode):
    service = RelayService(_settings(), upstream=FakeUpstream())
    with pytest.raises(ValidationError) as exc:
        asyncio.run(service.relay(query, response_mode=mode))
    assert exc.value.http_status == 400
    assert exc.value.code == "QUERY_REQUIRED"


def test_relay_access_disabled():
    service = RelayService(_settings(public_access=False), upstream=FakeUpstream())
    with pytest.raises(AccessDeniedError) as exc:
        asyncio.run(service.relay("hello"))
    assert exc.value.http_status == 403


def test_relay_missing_key_is_configuration_error():
    upstream = FakeUpstream()
    service = RelayService(_settings(dify_api_key=None), upstream=upstream)
    with pytest.raises(ConfigurationError) as exc:
        asyncio.run(service.relay("hello"))
    assert exc.value.http_status == 500
    assert exc.value.code == "MISSING_API_KEY"
    assert upstream.requests == []


def test_relay_missing_key_with_fallback_serves_demo():
    service = RelayService(_settings(dify_api_key=None, enable_fallback=True), upstream=FakeUpstream())
    result = asyncio.run(service.relay("hello", response_mode="streaming"))
    assert result.payload["mode"] == "demo"


def test_relay_demo_mode_skips_upstream():
    upstream = FakeUpstream()
    service = RelayService(_settings(demo_mode=True), upstream=upstream)
    result = asyncio.run(service.relay("hello", conversation_id="c-7"))
    assert upstream.requests == []
    assert result.payload["answer"] in DEMO_RESPONSES
    assert result.payload["conversation_id"] == "c-7"
    assert result.payload["message_id"].startswith("demo-msg-")


@pytest.mark.parametrize(
    "error",
    [
        ApiError(code="API_ERROR", message="boom", upstream_status=500),
        NetworkError(code="NETWORK_ERROR", message="refused"),
    ],
)
def test_relay_upstream_failure_without_fallback(error):
    service = RelayService(_settings(), upstream=FakeUpstream(error=error))
    with pytest.raises(UpstreamError) as exc:
        asyncio.run(service.relay("hello"))
    assert exc.value.http_status == 503
    assert exc.value.code == "UPSTREAM_UNAVAILABLE"


@pytest.mark.parametrize("mode", ["blocking", "streaming"])
def test_relay_upstream_failure_with_fallback(mode):
    error = ApiError(code="API_ERROR", message="boom", upstream_status=500)
    service = RelayService(_settings(enable_fallback=True), upstream=FakeUpstream(error=error))
    result = asyncio.run(service.relay("hello", response_mode=mode))
    assert result.payload["mode"] == "fallback"
    assert result.payload["answer"] == FALLBACK_RESPONSE
    assert result.payload["conversation_id"].startswith("fallback-")
    assert isinstance(result.payload["created_at"], int)


def test_relay_generates_user_id():
    upstream = FakeUpstream()
    service = RelayService(_settings(dify_user_prefix="kiosk"), upstream=upstream)
    asyncio.run(service.relay("hello"))
    assert re.fullmatch(r"kiosk-\d+-[0-9a-f]{9}", upstream.requests[0].user)


def test_config_status():
    service = RelayService(_settings(), upstream=FakeUpstream())
    status = service.config_status()
    assert status["configured"] is True
    assert "dify_api_key" not in status
    with pytest.raises(ConfigurationError):
        RelayService(_settings(dify_api_key=None), upstream=FakeUpstream()).config_status()
    demo = RelayService(_settings(dify_api_key=None, demo_mode=True), upstream=FakeUpstream()).config_status()
    assert demo["demoMode"] is True


def test_health_reports_upstream_state():
    healthy = asyncio.run(RelayService(_settings(), upstream=FakeUpstream()).health())
    assert healthy["status"] == "healthy"
    assert healthy["services"]["api"] == "healthy"

    failing = FakeUpstream(error=NetworkError(code="NETWORK_ERROR", message="refused"))
    degraded = asyncio.run(RelayService(_settings(), upstream=failing).health())
    assert degraded["status"] == "degraded"
    assert degraded["services"]["external_services"][0]["error"] == "NETWORK_ERROR"

    demo = asyncio.run(RelayService(_settings(demo_mode=True), upstream=FakeUpstream()).health())
    assert demo["status"] == "healthy"
    assert demo["services"]["api"] == "demo_mode"

    missing = asyncio.run(RelayService(_settings(dify_api_key=None), upstream=FakeUpstream()).health())
    assert missing["status"] == "degraded"
    assert missing["services"]["api"] == "not_configured"
