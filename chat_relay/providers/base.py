"""上游 AI 服务客户端抽象接口。

Relay 不直接依赖具体厂商的 HTTP 细节，而是依赖此协议：

- 每个厂商实现一个 UpstreamClient（如 DifyClient）。
- chat(req): 阻塞模式，返回上游解析后的 JSON。
- open_stream(req): 流式模式，返回已确认状态码的字节流，由调用方原样转发。

上游失败统一抛出 UpstreamError 子类，兜底策略由 Relay 决定。
"""

from typing import Any, AsyncIterator, Dict, Protocol

from chat_relay.domain.models import ChatRequest


class ByteStream(Protocol):
    """已打开的上游流式响应。"""

    content_type: str

    def aiter_raw(self) -> AsyncIterator[bytes]:
        ...

    async def aclose(self) -> None:
        ...


class UpstreamClient(Protocol):
    name: str

    async def chat(self, req: ChatRequest) -> Dict[str, Any]:
        ...

    async def open_stream(self, req: ChatRequest) -> ByteStream:
        ...
