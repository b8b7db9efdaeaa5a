"""统一的聊天请求、流事件与回答数据模型。

本模块定义了 Relay 与 Stream Consumer 共享的标准数据结构：

- ChatRequest: 一次发往上游的聊天请求（每次发送都新建，不落盘）。
- StreamEvent: 从上游流中单行 `data: <JSON>` 解码出的事件。
- ChatAnswer: 阻塞模式下的完整回答（包括演示/兜底回答）。

上游适配器（如 DifyClient）只依赖这些模型，
并负责在各自的 API JSON 和这些模型之间做转换。
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Optional


ResponseMode = Literal["blocking", "streaming"]

# 非上游回答的标记；真实上游回答不带 mode 字段
CANNED_MODES = frozenset({"demo", "fallback", "error-fallback"})


@dataclass
class ChatRequest:
    """一次完整的聊天请求。

    - query: 用户输入，必须非空。
    - conversation_id: 首轮为空，之后原样携带上游返回的会话标识。
    - response_mode: blocking 返回单个 JSON；streaming 返回事件流。
    - user: 用户标识；为空时由 Relay 生成。
    """

    query: str
    conversation_id: Optional[str] = None
    response_mode: ResponseMode = "blocking"
    user: Optional[str] = None

    @property
    def streaming(self) -> bool:
        return self.response_mode == "streaming"


@dataclass
class StreamEvent:
    """流中的单条事件记录。

    event 取值：
        - "message": answer 携带一段回答片段。
        - "message_end": 可能携带最终的 conversation_id。
        - 其他：忽略。
    """

    event: str
    answer: Optional[str] = None
    conversation_id: Optional[str] = None
    message_id: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "StreamEvent":
        answer = payload.get("answer")
        return cls(
            event=str(payload.get("event") or ""),
            answer=answer if isinstance(answer, str) else None,
            conversation_id=payload.get("conversation_id") or None,
            message_id=payload.get("message_id") or None,
            raw=payload,
        )


@dataclass
class ChatAnswer:
    """阻塞模式的回答，字段与上游 blocking 响应保持一致。"""

    answer: str
    conversation_id: Optional[str]
    message_id: Optional[str]
    created_at: int
    mode: Optional[str] = None

    @property
    def canned(self) -> bool:
        return self.mode in CANNED_MODES

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ChatAnswer":
        return cls(
            answer=str(payload.get("answer") or ""),
            conversation_id=payload.get("conversation_id") or None,
            message_id=payload.get("message_id") or payload.get("id") or None,
            created_at=int(payload.get("created_at") or 0),
            mode=payload.get("mode"),
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "answer": self.answer,
            "conversation_id": self.conversation_id,
            "message_id": self.message_id,
            "mode": self.mode,
            "created_at": self.created_at,
        }
