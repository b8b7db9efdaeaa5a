"""Relay 请求与响应的 Pydantic 模型。"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class RelayChatRequest(BaseModel):
    """POST /api/chat 的请求体，字段名兼容驼峰写法。"""

    model_config = ConfigDict(populate_by_name=True)

    # 缺少 query 由 relay 返回 400 QUERY_REQUIRED，而不是作为结构校验错误
    query: Optional[str] = None
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    response_mode: Optional[Literal["blocking", "streaming"]] = Field(default=None, alias="responseMode")
    user: Optional[str] = None


class ChatAnswerResponse(BaseModel):
    """阻塞模式回答，上游、演示与兜底回答共用此结构。"""

    answer: str
    conversation_id: Optional[str] = None
    message_id: Optional[str] = None
    mode: Optional[str] = None
    created_at: Optional[int] = None


class ErrorResponse(BaseModel):
    error: str
    code: str
