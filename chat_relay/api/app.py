"""对外 HTTP 服务模块（FastAPI）。

路由：
- POST /api/chat: Relay Endpoint，阻塞模式返回 JSON，流式模式原样转发上游字节流。
- GET /api/config: 配置探测。
- GET /health: 健康检查。

所有 BusinessError 统一渲染为 {"error": message, "code": code}。
"""

import logging

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask

from chat_relay import __version__
from chat_relay.api.dependencies import get_relay_service, get_settings, require_public_access
from chat_relay.api.schemas import ChatAnswerResponse, ErrorResponse, RelayChatRequest
from chat_relay.config.settings import Settings
from chat_relay.domain.exceptions import BusinessError
from chat_relay.infrastructure.logging.logger import log_event, logger
from chat_relay.relay.canned import error_fallback_answer
from chat_relay.relay.service import RelayService

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

router = APIRouter()


@router.post(
    "/api/chat",
    dependencies=[Depends(require_public_access)],
    responses={
        200: {"model": ChatAnswerResponse, "content": {"text/event-stream": {}}},
        400: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def chat(
    body: RelayChatRequest,
    service: RelayService = Depends(get_relay_service),
    cfg: Settings = Depends(get_settings),
):
    try:
        result = await service.relay(
            query=body.query,
            conversation_id=body.conversation_id,
            response_mode=body.response_mode,
            user=body.user,
        )
    except BusinessError:
        raise
    except Exception as e:
        logger.exception("Relay failed", extra={"extra": {"error": str(e)}})
        if cfg.enable_fallback:
            return JSONResponse(error_fallback_answer().to_payload())
        raise BusinessError(code="INTERNAL_ERROR", message="Internal server error", http_status=500)

    if result.streaming:
        stream = result.stream
        return StreamingResponse(
            stream.aiter_raw(),
            media_type="text/event-stream",
            headers=STREAM_HEADERS,
            background=BackgroundTask(stream.aclose),
        )
    return JSONResponse(result.payload)


@router.get("/api/config")
def config_status(service: RelayService = Depends(get_relay_service)) -> dict:
    return service.config_status()


@router.get("/health")
async def health(service: RelayService = Depends(get_relay_service)) -> JSONResponse:
    report = await service.health()
    return JSONResponse(report, status_code=200 if report["status"] == "healthy" else 503)


async def _business_error_handler(request: Request, exc: BusinessError) -> JSONResponse:
    level = logging.ERROR if exc.http_status >= 500 else logging.INFO
    log_event(level, "Request rejected", {"path": request.url.path}, code=exc.code, status=exc.http_status)
    return JSONResponse(exc.to_payload(), status_code=exc.http_status)


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    log_event(logging.INFO, "Invalid request body", {"path": request.url.path}, errors=str(exc.errors())[:300])
    return JSONResponse({"error": "Invalid request body", "code": "INVALID_REQUEST"}, status_code=400)


def create_app() -> FastAPI:
    app = FastAPI(title="Chat Relay", version=__version__)
    app.include_router(router)
    app.add_exception_handler(BusinessError, _business_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    return app


app = create_app()
