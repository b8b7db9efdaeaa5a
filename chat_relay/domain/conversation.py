from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Protocol


Role = Literal["user", "assistant"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class MessageRecord:
    """会话记录中的一条消息（UI 展示用）。"""

    id: str
    role: Role
    content: str
    created_at: datetime = field(default_factory=_utcnow)
    streaming: bool = False
    mode: Optional[str] = None


@dataclass
class AssembledMessage:
    """一次流式回答的累积缓冲。

    发送开始时创建（streaming=True），每个 message 事件追加片段，
    message_end 或流结束时 finalize。
    """

    id: str
    content: str = ""
    streaming: bool = True

    def append(self, fragment: str) -> None:
        if not self.streaming:
            raise RuntimeError(f"message {self.id} is already finalized")
        self.content += fragment

    def finalize(self) -> bool:
        """结束流式状态；返回是否发生了状态变化。"""
        if not self.streaming:
            return False
        self.streaming = False
        return True


class HistoryStore(Protocol):
    """聊天记录的键值持久化接口，最后一次写入生效。"""

    def load(self, key: str) -> List[Dict[str, Any]]:
        ...

    def save(self, key: str, messages: List[Dict[str, Any]]) -> None:
        ...

    def delete(self, key: str) -> None:
        ...
