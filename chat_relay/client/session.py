"""客户端聊天会话（Stream Consumer）。

ChatSession 负责：
1. 向 Relay 发送请求（每个会话同一时刻只允许一个未完成的发送）。
2. 流式模式下通过 httpx 的 aiter_lines() 逐行读取并解析事件，把片段累积到 AssembledMessage。
3. 每个片段到达后立即通知 listener（kind="delta"），不等待流结束。
4. 记录 ConversationHandle，并在后续请求中原样携带。
5. 取消（cancel）、空闲超时与错误处理：每次发送都以完整回答、兜底回答、
   可见错误或取消之一结束，不会停留在“正在输入”的状态。
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional
from uuid import uuid4

import httpx

from chat_relay.client.sse import parse_event
from chat_relay.config.settings import settings
from chat_relay.domain.conversation import AssembledMessage, HistoryStore, MessageRecord
from chat_relay.domain.exceptions import (
    BusinessError,
    SendInProgressError,
    StreamError,
    StreamTimeoutError,
    StreamTransportError,
    ValidationError,
)
from chat_relay.domain.models import ChatAnswer, ResponseMode
from chat_relay.infrastructure.logging.logger import log_event


SendStatus = Literal["complete", "fallback", "demo", "error", "cancelled"]


@dataclass
class SessionEvent:
    """ChatSession 推送给 UI 的事件。

    kind:
        - "delta": 新片段已追加，message.content 为当前完整的部分文本。
        - "final": 回答结束（完整回答、演示或兜底回答）。
        - "error": 发送失败，部分回答已被丢弃。
        - "cancelled": 发送被取消，部分回答已被移除。
    """

    kind: Literal["delta", "final", "error", "cancelled"]
    message: Optional[AssembledMessage] = None
    delta_text: Optional[str] = None
    error: Optional[BusinessError] = None


@dataclass
class SendOutcome:
    status: SendStatus
    message: Optional[MessageRecord] = None
    error: Optional[BusinessError] = None


Listener = Callable[[SessionEvent], None]


class AbortHandle:
    """单次发送的取消句柄，abort() 幂等。"""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    def abort(self) -> bool:
        """请求取消；只有第一次调用返回 True。"""
        if self._event.is_set():
            return False
        self._event.set()
        return True

    async def wait(self) -> None:
        await self._event.wait()


class _Aborted(Exception):
    """内部信号：当前发送已被取消。"""


async def _read_next(items) -> Optional[Any]:
    try:
        return await items.__anext__()
    except StopAsyncIteration:
        return None


async def _cancel_task(task: "asyncio.Future[Any]") -> None:
    task.cancel()
    await asyncio.wait({task})
    if not task.cancelled():
        task.exception()


class ChatSession:
    def __init__(
        self,
        cfg=settings,
        relay_url: Optional[str] = None,
        user: Optional[str] = None,
        listener: Optional[Listener] = None,
        history: Optional[HistoryStore] = None,
        session_id: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._settings = cfg
        self.relay_url = relay_url or cfg.relay_url
        self.user = user or f"user-{uuid4().hex[:9]}"
        self.session_id = session_id or f"s-{uuid4().hex}"
        self.conversation_id: Optional[str] = None
        self.messages: List[MessageRecord] = []
        self.last_error: Optional[BusinessError] = None
        self._listener = listener
        self._history = history
        self._transport = transport
        self._idle_timeout = float(cfg.stream_idle_timeout)
        self._abort: Optional[AbortHandle] = None
        self._pending: Optional[MessageRecord] = None
        if history is not None:
            self._restore()

    @property
    def busy(self) -> bool:
        return self._abort is not None and not self._abort.aborted

    # ---- 对外接口 ----

    async def send(
        self,
        query: str,
        response_mode: ResponseMode = "streaming",
        preempt: bool = False,
    ) -> SendOutcome:
        """发送一条消息并等待其结束。

        Args:
            query: 用户输入，不能为空。
            response_mode: streaming 逐片段推送；blocking 等待完整 JSON。
            preempt: 为 True 时先取消正在进行的发送，否则直接拒绝。

        Raises:
            ValidationError: query 为空。
            SendInProgressError: 已有未完成的发送且 preempt 为 False。
        """
        if not query or not query.strip():
            raise ValidationError(code="QUERY_REQUIRED", message="Query is required")
        if self.busy:
            if not preempt:
                raise SendInProgressError()
            self.cancel()

        handle = AbortHandle()
        self._abort = handle
        self.last_error = None
        self.messages.append(MessageRecord(id=f"m-{uuid4().hex}", role="user", content=query))
        assembled = AssembledMessage(id=f"m-{uuid4().hex}")
        placeholder = MessageRecord(id=assembled.id, role="assistant", content="", streaming=True)
        self.messages.append(placeholder)
        self._pending = placeholder

        log_ctx: Dict[str, Any] = {
            "session_id": self.session_id,
            "conversation_id": self.conversation_id,
            "response_mode": response_mode,
            "message_id": assembled.id,
        }
        log_event(logging.INFO, "Send started", log_ctx)
        try:
            outcome = await self._run(query, response_mode, handle, assembled, placeholder, log_ctx)
        finally:
            if self._abort is handle:
                self._abort = None
            if self._pending is placeholder:
                self._pending = None
        self._persist()
        return outcome

    def cancel(self) -> bool:
        """取消正在进行的发送；没有可取消的发送时返回 False。"""
        handle = self._abort
        if handle is None or not handle.abort():
            return False
        if self._pending is not None:
            self._discard(self._pending)
            self._pending = None
        log_event(logging.INFO, "Send cancelled", {"session_id": self.session_id})
        return True

    def reset(self) -> None:
        """清空会话：取消发送、清空记录并忘记 ConversationHandle。"""
        self.cancel()
        self.messages.clear()
        self.conversation_id = None
        self.last_error = None
        if self._history is not None:
            self._history.delete(self.session_id)

    # ---- 发送流程 ----

    async def _run(
        self,
        query: str,
        response_mode: ResponseMode,
        handle: AbortHandle,
        assembled: AssembledMessage,
        placeholder: MessageRecord,
        log_ctx: Dict[str, Any],
    ) -> SendOutcome:
        body = {
            "query": query,
            "conversationId": self.conversation_id,
            "responseMode": response_mode,
            "user": self.user,
        }
        try:
            async with self._client() as client:
                request = client.build_request("POST", self.relay_url, json=body)
                response = await self._race(client.send(request, stream=True), handle)
                try:
                    return await self._consume(response, response_mode, handle, assembled, placeholder, log_ctx)
                finally:
                    await response.aclose()
        except _Aborted:
            self._discard(placeholder)
            self._emit(SessionEvent(kind="cancelled", message=assembled))
            return SendOutcome(status="cancelled")
        except BusinessError as e:
            return self._fail(e, placeholder, log_ctx)
        except httpx.HTTPError as e:
            return self._fail(
                StreamTransportError(code="STREAM_BROKEN", message=str(e) or type(e).__name__, http_status=502),
                placeholder,
                log_ctx,
            )

    async def _consume(
        self,
        response: httpx.Response,
        response_mode: ResponseMode,
        handle: AbortHandle,
        assembled: AssembledMessage,
        placeholder: MessageRecord,
        log_ctx: Dict[str, Any],
    ) -> SendOutcome:
        if response.status_code >= 400:
            raw = await self._race(response.aread(), handle)
            raise self._relay_error(response.status_code, raw)

        content_type = response.headers.get("content-type", "")
        # 演示/兜底回答即使在流式请求下也以 JSON 返回
        if response_mode == "blocking" or "application/json" in content_type:
            raw = await self._race(response.aread(), handle)
            try:
                data = json.loads(raw)
            except ValueError as e:
                raise StreamError(code="RELAY_ERROR", message=f"Invalid JSON from relay: {e}", http_status=502)
            return self._complete_blocking(ChatAnswer.from_payload(data), handle, assembled, placeholder, log_ctx)

        lines = response.aiter_lines()
        received = 0
        while True:
            line = await self._race(_read_next(lines), handle)
            if line is None:
                break
            received += 1
            # message_end 之后不再读取，连接是否继续保持与本次发送无关
            if self._dispatch(line, assembled, placeholder):
                break
        if received == 0:
            raise StreamError(code="NO_RESPONSE_BODY", message="No response body", http_status=502)

        # 没有收到 message_end 也必须结束流式状态
        assembled.finalize()
        self._settle(handle, placeholder, assembled)
        self._emit(SessionEvent(kind="final", message=assembled))
        log_event(logging.INFO, "Stream finished", log_ctx, lines=received, conversation_id=self.conversation_id)
        return SendOutcome(status="complete", message=placeholder)

    def _dispatch(self, line: str, assembled: AssembledMessage, placeholder: MessageRecord) -> bool:
        """处理一行事件；收到 message_end 时返回 True。"""
        event = parse_event(line)
        if event is None:
            return False
        if event.event == "message":
            if event.answer and assembled.streaming:
                assembled.append(event.answer)
                placeholder.content = assembled.content
                self._emit(SessionEvent(kind="delta", message=assembled, delta_text=event.answer))
        elif event.event == "message_end":
            if event.conversation_id and not self.conversation_id:
                self.conversation_id = event.conversation_id
            return True
        return False

    def _settle(self, handle: AbortHandle, placeholder: MessageRecord, assembled: AssembledMessage) -> None:
        """回答已完整：写回占位消息，并让本次发送不再可取消。"""
        placeholder.content = assembled.content
        placeholder.streaming = False
        if self._abort is handle:
            self._abort = None
        if self._pending is placeholder:
            self._pending = None

    def _complete_blocking(
        self,
        answer: ChatAnswer,
        handle: AbortHandle,
        assembled: AssembledMessage,
        placeholder: MessageRecord,
        log_ctx: Dict[str, Any],
    ) -> SendOutcome:
        # 演示/兜底回答里的会话标识是伪造的，不能带给上游
        if not answer.canned and answer.conversation_id and not self.conversation_id:
            self.conversation_id = answer.conversation_id
        if answer.answer:
            assembled.append(answer.answer)
            self._emit(SessionEvent(kind="delta", message=assembled, delta_text=answer.answer))
        assembled.finalize()
        placeholder.mode = answer.mode
        self._settle(handle, placeholder, assembled)
        self._emit(SessionEvent(kind="final", message=assembled))
        status: SendStatus = "complete"
        if answer.mode == "demo":
            status = "demo"
        elif answer.canned:
            status = "fallback"
        log_event(logging.INFO, "Answer received", log_ctx, mode=answer.mode, status=status)
        return SendOutcome(status=status, message=placeholder)

    def _fail(self, error: BusinessError, placeholder: MessageRecord, log_ctx: Dict[str, Any]) -> SendOutcome:
        self._discard(placeholder)
        self.last_error = error
        log_event(logging.ERROR, "Send failed", log_ctx, code=error.code, error=error.message[:200])
        self._emit(SessionEvent(kind="error", error=error))
        return SendOutcome(status="error", error=error)

    # ---- 辅助方法 ----

    async def _race(self, aw: Awaitable[Any], handle: AbortHandle) -> Any:
        """等待 aw，同时响应取消与空闲超时。"""
        if handle.aborted:
            if asyncio.iscoroutine(aw):
                aw.close()
            raise _Aborted()
        task = asyncio.ensure_future(aw)
        waiter = asyncio.ensure_future(handle.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter},
                timeout=self._idle_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()
        if handle.aborted:
            await _cancel_task(task)
            raise _Aborted()
        if task in done:
            return task.result()
        await _cancel_task(task)
        raise StreamTimeoutError(
            code="STREAM_TIMEOUT",
            message=f"No data received for {self._idle_timeout:g}s",
            http_status=504,
        )

    def _client(self) -> httpx.AsyncClient:
        # 读超时由 _race 的空闲超时负责
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self._settings.http_timeout, read=None),
            trust_env=False,
            transport=self._transport,
        )

    @staticmethod
    def _relay_error(status_code: int, raw: bytes) -> BusinessError:
        try:
            payload = json.loads(raw)
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}
        return BusinessError(
            code=payload.get("code") or "RELAY_ERROR",
            message=payload.get("error") or f"HTTP {status_code}",
            http_status=status_code,
        )

    def _discard(self, placeholder: MessageRecord) -> None:
        self.messages = [m for m in self.messages if m is not placeholder]

    def _emit(self, event: SessionEvent) -> None:
        if self._listener is not None:
            self._listener(event)

    def _persist(self) -> None:
        if self._history is None:
            return
        records = [
            {
                "id": m.id,
                "role": m.role,
                "content": m.content,
                "created_at": m.created_at.isoformat(),
                "mode": m.mode,
            }
            for m in self.messages
            if not m.streaming
        ]
        self._history.save(self.session_id, records)

    def _restore(self) -> None:
        for data in self._history.load(self.session_id):
            self.messages.append(
                MessageRecord(
                    id=data["id"],
                    role=data["role"],
                    content=data.get("content") or "",
                    created_at=datetime.fromisoformat(data["created_at"])
                    if data.get("created_at")
                    else datetime.now(timezone.utc),
                    mode=data.get("mode"),
                )
            )
