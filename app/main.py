"""
app.main
~~~~~~~~

应用入口。

lifespan 中建立 MongoDB 连接、组装 ``ChatHub`` 与违禁词仓库并启动心跳巡检；
关闭时按相反顺序释放。REST 路由挂在 ``/api`` 下，WebSocket 端点挂在
``settings.WS_PATH``。
"""
from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.api import room, ws
from app.core.config import settings
from app.core.exceptions import PersistenceError
from app.core.logging import get_logger, setup_logging
from app.core.rate_limit import limiter
from app.db import close_mongo, connect_mongo
from app.db.chat_repository import ChatRepository
from app.db.forbidden_word_repository import ForbiddenWordRepository
from app.schemas.api_response import ApiResponse
from app.services.chat_hub import ChatHub

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    db = await connect_mongo()
    hub = ChatHub(store=ChatRepository(db), settings=settings)
    app.state.chat_hub = hub
    app.state.forbidden_words = ForbiddenWordRepository(db)
    hub.supervisor.start()
    logger.info(
        "🚀 服务已启动 | env=%s | ws=%s | heartbeat=%.0fs | presence_room=%s",
        settings.ENVIRONMENT,
        settings.WS_PATH,
        settings.HEARTBEAT_INTERVAL,
        settings.PRESENCE_ROOM_ID,
    )
    try:
        yield
    finally:
        await hub.supervisor.stop()
        await close_mongo()
        logger.info("👋 服务已关闭 | 剩余连接: %d", len(hub.registry))


app: FastAPI = FastAPI(
    title=settings.PROJECT_NAME,
    description="实时聊天房间与在线状态服务",
    version=settings.VERSION,
    debug=settings.debug,
    lifespan=lifespan,
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.allow_cors_all_origins else settings.CORS_ORIGINS,
    allow_credentials=settings.allow_cors_all_origins,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["*"],
)

app.include_router(room.router, prefix="/api", tags=["Rooms & Presence"])
app.include_router(ws.router, tags=["WebSocket Chat"])


@app.exception_handler(PersistenceError)
async def persistence_exception_handler(request: Request, exc: PersistenceError) -> JSONResponse:
    logger.error("存储不可用: %s %s -> %s", request.method, request.url.path, exc)
    return ApiResponse.fail_response("存储服务暂不可用", status_code=503)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """兜底：未处理异常统一包装为 500，prod 环境不暴露异常详情。"""
    logger.error("未捕获异常: %s %s", request.method, request.url.path, exc_info=exc)
    detail = "服务器内部错误" if settings.is_prod else str(exc)
    return ApiResponse.fail_response(detail, status_code=500)


@app.get("/api/health", tags=["System"])
async def health_check(request: Request) -> dict:
    """存活检查，附带实时层的连接统计。"""
    hub: ChatHub | None = getattr(request.app.state, "chat_hub", None)
    return {
        "ok": True,
        "environment": settings.ENVIRONMENT,
        "connections": len(hub.registry) if hub else 0,
        "online_users": len(hub.online_account_ids()) if hub else 0,
        "heartbeat": hub.supervisor.running if hub else False,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.reload,
        log_level=settings.effective_log_level.lower(),
    )
