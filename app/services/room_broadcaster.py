"""
app.services.room_broadcaster
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

消息广播器 —— 把一份负载投递给一组连接。

负载只序列化一次；单个连接发送失败只记录日志，既不打断本轮广播，
也不向调用方抛出，更不会在这里主动断开该连接（那是心跳巡检的职责）。
"""
from __future__ import annotations

import asyncio
import json
from collections.abc import Iterable
from typing import Any

from app.core.logging import get_logger
from app.services.connection import ConnectionResolver

logger = get_logger(__name__)


class Broadcaster:
    """基于 ``ConnectionResolver`` 的广播器。

    Attributes:
        resolver: 连接解析器（生产环境为 ``ConnectionRegistry``）。
    """

    def __init__(self, resolver: ConnectionResolver) -> None:
        self.resolver = resolver

    async def send(self, connection_id: str, payload: dict[str, Any]) -> bool:
        """向单个连接投递，返回是否成功。连接已不存在视为无操作。"""
        return await self.broadcast([connection_id], payload) == 1

    async def broadcast(self, connection_ids: Iterable[str], payload: dict[str, Any]) -> int:
        """向一组连接并发投递同一负载。

        Returns:
            成功投递的连接数。
        """
        message = json.dumps(payload, ensure_ascii=False)

        targets = []
        for connection_id in dict.fromkeys(connection_ids):
            connection = self.resolver.lookup(connection_id)
            if connection is not None:
                targets.append(connection)
        if not targets:
            return 0

        tasks = [connection.transport.send_text(message) for connection in targets]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        delivered = 0
        for connection, result in zip(targets, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "广播失败 | conn=%s | type=%s | %s",
                    connection.connection_id, payload.get("type"), result,
                )
            else:
                delivered += 1
        return delivered

    async def broadcast_to_all(self, payload: dict[str, Any]) -> int:
        """向所有已登记的连接广播。"""
        return await self.broadcast(self.resolver.connection_ids(), payload)
