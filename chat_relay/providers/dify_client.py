"""Dify Provider 适配器。

- URL: {base_url}/chat-messages
- 认证: Authorization: Bearer <api_key>
- 请求体: {inputs: {}, query, response_mode, conversation_id, user}

blocking 模式返回单个 JSON；streaming 模式返回 `data: <JSON>` 行组成的事件流，
本模块只负责打开连接并检查状态码，流内容不做任何解析。
"""

import logging
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from chat_relay.config.settings import settings
from chat_relay.domain.exceptions import ApiError, ConfigurationError, NetworkError
from chat_relay.domain.models import ChatRequest, ResponseMode
from chat_relay.infrastructure.logging.logger import log_event


class DifyStream:
    """已打开的上游流式响应，字节原样转发。

    aclose() 可重复调用；连接与 AsyncClient 一起释放。
    """

    def __init__(self, client: httpx.AsyncClient, response: httpx.Response):
        self._client = client
        self._response = response
        self._closed = False
        self.content_type = response.headers.get("content-type", "text/event-stream")

    async def aiter_raw(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._response.aiter_raw():
                yield chunk
        except httpx.HTTPError as e:
            log_event(logging.ERROR, "Upstream stream broken", {}, error=str(e))
            raise
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._response.aclose()
        await self._client.aclose()
        log_event(logging.INFO, "Upstream stream closed", {})


class DifyClient:
    """Dify chat-messages 客户端实现。"""

    name = "dify"

    def __init__(self, cfg=settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        # transport 仅用于测试注入 httpx.MockTransport
        self._settings = cfg
        self._transport = transport

    # ---- 阻塞 ----

    async def chat(self, req: ChatRequest) -> Dict[str, Any]:
        payload = self._build_payload(req, "blocking")
        headers = self._headers()
        try:
            async with self._client() as client:
                resp = await client.post(self._url(), json=payload, headers=headers)
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        self._raise_for_status(resp.status_code, resp.text)
        try:
            return resp.json()
        except ValueError as e:
            raise ApiError(code="API_ERROR", message=f"Invalid JSON from upstream: {e}")

    # ---- 流式 ----

    async def open_stream(self, req: ChatRequest) -> DifyStream:
        payload = self._build_payload(req, "streaming")
        headers = self._headers()
        client = self._client()
        request = client.build_request("POST", self._url(), json=payload, headers=headers)
        try:
            resp = await client.send(request, stream=True)
        except httpx.RequestError as e:
            await client.aclose()
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        if resp.status_code >= 400:
            try:
                body = (await resp.aread()).decode("utf-8", errors="replace")
            finally:
                await resp.aclose()
                await client.aclose()
            self._raise_for_status(resp.status_code, body)
        return DifyStream(client, resp)

    # ---- 辅助方法 ----

    def _build_payload(self, req: ChatRequest, mode: ResponseMode) -> dict:
        return {
            "inputs": {},
            "query": req.query,
            "response_mode": mode,
            "conversation_id": req.conversation_id or "",
            "user": req.user,
        }

    def _headers(self) -> Dict[str, str]:
        api_key = getattr(self._settings, "dify_api_key", None)
        if not api_key:
            raise ConfigurationError(code="MISSING_API_KEY", message="DIFY_API_KEY not set")
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def _url(self) -> str:
        base = getattr(self._settings, "dify_base_url", None) or "https://api.dify.ai/v1"
        return f"{base.rstrip('/')}/chat-messages"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._settings.http_timeout,
            trust_env=False,
            transport=self._transport,
        )

    @staticmethod
    def _raise_for_status(status_code: int, body: str) -> None:
        if status_code < 400:
            return
        raise ApiError(
            code="API_ERROR",
            message=(body or "")[:500],
            upstream_status=status_code,
        )
