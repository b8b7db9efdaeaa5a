"""Relay 策略层。

不依赖 Web 框架，负责：
1. 公共访问开关与参数校验。
2. 演示模式、凭证缺失时的处理。
3. 调用上游（阻塞或流式），失败时按 enable_fallback 决定兜底回答或 503。

返回的 RelayResult 要么是 JSON 回答，要么是待原样转发的上游字节流。
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

from chat_relay import __version__
from chat_relay.config.settings import settings
from chat_relay.domain.exceptions import (
    AccessDeniedError,
    ConfigurationError,
    UpstreamError,
    ValidationError,
)
from chat_relay.domain.models import ChatRequest, ResponseMode
from chat_relay.infrastructure.logging.logger import log_event
from chat_relay.providers import create_provider
from chat_relay.providers.base import ByteStream, UpstreamClient
from chat_relay.relay.canned import demo_answer, fallback_answer


@dataclass
class RelayResult:
    """payload 与 stream 二选一。"""

    payload: Optional[Dict[str, Any]] = None
    stream: Optional[ByteStream] = None

    @property
    def streaming(self) -> bool:
        return self.stream is not None


class RelayService:
    def __init__(self, cfg=settings, upstream: Optional[UpstreamClient] = None):
        self._settings = cfg
        self._upstream = upstream or create_provider(cfg=cfg)

    def check_access(self) -> None:
        if not getattr(self._settings, "public_access", True):
            raise AccessDeniedError()

    async def relay(
        self,
        query: Optional[str],
        conversation_id: Optional[str] = None,
        response_mode: Optional[ResponseMode] = None,
        user: Optional[str] = None,
    ) -> RelayResult:
        """转发一次聊天请求。

        Raises:
            AccessDeniedError: 公共访问关闭（403）。
            ValidationError: query 为空或只有空白（400）。
            ConfigurationError: 未配置 API Key 且未开启演示/兜底（500）。
            UpstreamError: 上游失败且未开启兜底（503）。
        """
        self.check_access()
        if not query or not query.strip():
            raise ValidationError(code="QUERY_REQUIRED", message="Query is required")

        req = ChatRequest(
            query=query,
            conversation_id=conversation_id or None,
            response_mode=response_mode or "blocking",
            user=user or self._generate_user(),
        )
        log_ctx: Dict[str, Any] = {
            "trace_id": f"tr-{uuid4().hex}",
            "conversation_id": req.conversation_id,
            "response_mode": req.response_mode,
            "user": req.user,
        }
        log_event(logging.INFO, "Relay request accepted", log_ctx)

        if self._settings.demo_mode:
            log_event(logging.INFO, "Demo mode answer", log_ctx)
            return RelayResult(payload=demo_answer(req.conversation_id).to_payload())
        if not getattr(self._settings, "dify_api_key", None):
            if self._settings.enable_fallback:
                log_event(logging.WARNING, "API key missing, serving demo answer", log_ctx)
                return RelayResult(payload=demo_answer(req.conversation_id).to_payload())
            raise ConfigurationError(code="MISSING_API_KEY", message="DIFY_API_KEY environment variable is not set")

        try:
            if req.streaming:
                stream = await self._upstream.open_stream(req)
                log_event(logging.INFO, "Upstream stream opened", log_ctx)
                return RelayResult(stream=stream)
            data = await self._upstream.chat(req)
        except UpstreamError as e:
            log_event(
                logging.ERROR,
                "Upstream call failed",
                log_ctx,
                code=e.code,
                upstream_status=e.extra.get("upstream_status"),
                error=e.message[:200],
            )
            if self._settings.enable_fallback:
                return RelayResult(payload=fallback_answer(req.conversation_id).to_payload())
            raise UpstreamError(
                code="UPSTREAM_UNAVAILABLE",
                message="AI service temporarily unavailable",
                cause=e.code,
            )
        return RelayResult(payload=data)

    def config_status(self) -> Dict[str, Any]:
        """供前端探测的配置概况，不包含密钥本身。"""
        cfg = self._settings
        if not getattr(cfg, "dify_api_key", None) and not cfg.demo_mode:
            raise ConfigurationError(code="MISSING_API_KEY", message="DIFY_API_KEY environment variable is not set")
        return {
            "configured": bool(getattr(cfg, "dify_api_key", None)),
            "baseUrl": cfg.dify_base_url,
            "demoMode": cfg.demo_mode,
            "fallbackEnabled": cfg.enable_fallback,
        }

    async def health(self) -> Dict[str, Any]:
        """健康检查：在已配置且非演示模式时用一次 blocking 请求探测上游。"""
        cfg = self._settings
        api_key = getattr(cfg, "dify_api_key", None)
        now = datetime.now(timezone.utc).isoformat()
        report: Dict[str, Any] = {
            "status": "healthy",
            "timestamp": now,
            "version": __version__,
            "environment": getattr(cfg, "environment", "development"),
            "config": {
                "apiKeyConfigured": bool(api_key),
                "baseUrl": cfg.dify_base_url,
                "demoMode": cfg.demo_mode,
                "fallbackEnabled": cfg.enable_fallback,
                "publicAccess": getattr(cfg, "public_access", True),
            },
            "services": {"api": "unknown", "external_services": []},
        }
        services = report["services"]
        if api_key and not cfg.demo_mode:
            probe = ChatRequest(query="health check", user="health-check-user")
            started = time.monotonic()
            try:
                await self._upstream.chat(probe)
            except UpstreamError as e:
                services["api"] = "unhealthy"
                services["external_services"].append(
                    {"name": "dify_api", "status": "unhealthy", "error": e.code, "last_check": now}
                )
            else:
                services["api"] = "healthy"
                services["external_services"].append(
                    {
                        "name": "dify_api",
                        "status": "healthy",
                        "response_time_ms": int((time.monotonic() - started) * 1000),
                        "last_check": now,
                    }
                )
        else:
            services["api"] = "demo_mode" if cfg.demo_mode else "not_configured"

        if (not api_key and not cfg.demo_mode) or services["api"] == "unhealthy":
            report["status"] = "degraded"
        return report

    def _generate_user(self) -> str:
        prefix = getattr(self._settings, "dify_user_prefix", None) or "visitor"
        return f"{prefix}-{int(time.time() * 1000)}-{uuid4().hex[:9]}"
