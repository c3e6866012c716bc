"""
app.api.ws
~~~~~~~~~~

WebSocket 实时通道 —— 单一物理连接复用多个逻辑房间（聊天房间 + 全局在线状态房间）。

每个连接一个读循环：按到达顺序逐帧交给 ``RoomCoordinator`` 处理，
处理完一帧才读下一帧，保证同一连接内事件不乱序。读循环与“被心跳淘汰”
信号并发等待，任一结束都会走同一条断线清理路径。

消息协议见 ``app.schemas.ws_events``。
"""
from __future__ import annotations

import asyncio

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from app.core.config import settings
from app.core.logging import connection_id_ctx_var, get_logger
from app.services.chat_hub import ChatHub

logger = get_logger(__name__)

router: APIRouter = APIRouter()


@router.websocket(settings.WS_PATH)
async def websocket_chat_endpoint(websocket: WebSocket) -> None:
    """WebSocket 聊天端点。

    Args:
        websocket: FastAPI WebSocket 连接对象。
    """
    hub: ChatHub = websocket.app.state.chat_hub
    await websocket.accept()
    connection = hub.connect(websocket)
    token = connection_id_ctx_var.set(connection.connection_id)

    async def receive_loop() -> None:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes") or b""
            await hub.coordinator.handle_raw(connection.connection_id, raw)

    reader = asyncio.create_task(receive_loop())
    evicted = asyncio.create_task(connection.closed.wait())
    try:
        done, _ = await asyncio.wait({reader, evicted}, return_when=asyncio.FIRST_COMPLETED)
        if reader in done:
            exc = reader.exception()
            if isinstance(exc, WebSocketDisconnect):
                logger.info("客户端断开 | code=%s", exc.code)
            elif exc is not None:
                logger.error("WebSocket 异常: %s", exc, exc_info=exc)
        else:
            logger.info("连接已被心跳巡检淘汰")
    finally:
        reader.cancel()
        evicted.cancel()
        await hub.disconnect(connection.connection_id)
        logger.info("连接关闭 | 在线连接: %d", len(hub.registry))
        connection_id_ctx_var.reset(token)
