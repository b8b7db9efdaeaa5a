"""演示/兜底回答。

这些回答与上游 blocking 响应同形，只能通过 mode 字段区分。
"""

import random
import time
from typing import Optional

from chat_relay.domain.models import ChatAnswer


DEMO_RESPONSES = [
    "I'm currently running in demo mode. To get real AI responses, please configure your Dify API key. "
    "I can help you with various topics including technology, general knowledge, and problem-solving!",
    "This is a demonstration response. For full AI capabilities, please set up your Dify API configuration. "
    "I'm designed to assist with questions, provide explanations, and engage in helpful conversations.",
    "Demo mode is active! To unlock the full potential of this AI assistant, configure your Dify API settings. "
    "I can help with research, explanations, coding assistance, and much more!",
    "You're seeing a sample response since the API is in demo mode. Once properly configured with Dify, "
    "I'll provide intelligent, context-aware responses to all your questions and requests.",
]

FALLBACK_RESPONSE = (
    "I'm having trouble connecting to my AI service right now, but I'm still here to help! "
    "This is a fallback response. Please try again in a moment, or contact support if the issue persists."
)

ERROR_FALLBACK_RESPONSE = (
    "I encountered an unexpected issue, but I'm still here to assist you! "
    "This is a fallback response while I resolve the technical difficulty. Please try again shortly."
)


def _now_ms() -> int:
    return int(time.time() * 1000)


def demo_answer(conversation_id: Optional[str] = None, rng: Optional[random.Random] = None) -> ChatAnswer:
    ts = _now_ms()
    text = (rng or random).choice(DEMO_RESPONSES)
    return ChatAnswer(
        answer=text,
        conversation_id=conversation_id or f"demo-{ts}",
        message_id=f"demo-msg-{ts}",
        created_at=ts // 1000,
        mode="demo",
    )


def fallback_answer(conversation_id: Optional[str] = None) -> ChatAnswer:
    ts = _now_ms()
    return ChatAnswer(
        answer=FALLBACK_RESPONSE,
        conversation_id=conversation_id or f"fallback-{ts}",
        message_id=f"fallback-msg-{ts}",
        created_at=ts // 1000,
        mode="fallback",
    )


def error_fallback_answer() -> ChatAnswer:
    ts = _now_ms()
    return ChatAnswer(
        answer=ERROR_FALLBACK_RESPONSE,
        conversation_id=f"error-fallback-{ts}",
        message_id=f"error-msg-{ts}",
        created_at=ts // 1000,
        mode="error-fallback",
    )
