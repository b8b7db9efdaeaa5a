"""Stream Consumer：事件行解析与客户端聊天会话。"""

from chat_relay.client.session import AbortHandle, ChatSession, SendOutcome, SessionEvent
from chat_relay.client.sse import parse_event

__all__ = ["AbortHandle", "ChatSession", "SendOutcome", "SessionEvent", "parse_event"]
