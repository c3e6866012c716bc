"""
app.services.chat_hub
~~~~~~~~~~~~~~~~~~~~~

实时聊天中枢 —— 进程内唯一的聚合对象，持有全部房间 / 在线状态。

在 FastAPI lifespan 中创建一次并挂载于 ``app.state.chat_hub``；
测试中每个用例各自创建独立实例。单进程、无外部锁是这里的构造前提：
所有状态只由同一个事件循环读写。

- ``connect(transport)``               → 登记新连接
- ``disconnect(connection_id)``        → 主动断开后的清理
- ``evict(connection_id)``             → 心跳超时淘汰（清理 + 关闭传输）
- ``broadcast_to_room(room_id, data)`` → 供 HTTP 层推送任意负载到房间
"""
from __future__ import annotations

import uuid
from typing import Any

from app.core.config import Settings, get_settings
from app.core.logging import get_logger
from app.core.rate_limit import WebSocketRateLimiter
from app.db.store import ChatStore
from app.schemas.chat import normalize_room_id
from app.services.connection import Connection, ConnectionRegistry, Transport
from app.services.coordinator import RoomCoordinator
from app.services.liveness import LivenessSupervisor
from app.services.presence import PresenceTracker
from app.services.room import RoomMembershipIndex
from app.services.room_broadcaster import Broadcaster

logger = get_logger(__name__)


class ChatHub:
    """实时层聚合根。

    Attributes:
        settings: 配置。
        store: 持久化接口。
        registry: 连接注册表。
        presence: 在线状态表。
        index: 房间成员索引。
        broadcaster: 广播器。
        coordinator: 协议状态机。
        supervisor: 心跳巡检。
    """

    def __init__(self, store: ChatStore, settings: Settings | None = None) -> None:
        self.settings: Settings = settings or get_settings()
        self.store = store
        self.registry = ConnectionRegistry()
        self.presence = PresenceTracker()
        self.index = RoomMembershipIndex()
        self.broadcaster = Broadcaster(self.registry)
        self.coordinator = RoomCoordinator(
            registry=self.registry,
            presence=self.presence,
            index=self.index,
            broadcaster=self.broadcaster,
            store=store,
            presence_room_id=self.settings.PRESENCE_ROOM_ID,
            history_limit=self.settings.HISTORY_LIMIT,
            rate_limiter=WebSocketRateLimiter(interval_seconds=self.settings.WS_MESSAGE_INTERVAL),
        )
        self.supervisor = LivenessSupervisor(
            registry=self.registry,
            broadcaster=self.broadcaster,
            evict=self.evict,
            interval=self.settings.HEARTBEAT_INTERVAL,
        )

    def connect(self, transport: Transport) -> Connection:
        """为新的传输会话分配连接 ID 并登记。"""
        connection = self.registry.register(uuid.uuid4().hex, transport)
        logger.info("新连接 | conn=%s | 在线连接: %d", connection.connection_id, len(self.registry))
        return connection

    async def disconnect(self, connection_id: str) -> None:
        """传输关闭后的清理（幂等）。"""
        await self.coordinator.handle_disconnect(connection_id)

    async def evict(self, connection_id: str) -> None:
        """心跳超时淘汰：先执行与断开相同的清理，再关闭底层传输。"""
        connection = self.registry.lookup(connection_id)
        if connection is None:
            return
        await self.coordinator.handle_disconnect(connection_id)
        connection.closed.set()
        try:
            await connection.transport.close(code=1001)
        except Exception as e:
            # 半开连接关闭时底层通常已不可写
            logger.debug("关闭被淘汰的连接失败 | conn=%s | %s", connection_id, e)

    async def broadcast_to_room(self, room_id: int | str, payload: dict[str, Any]) -> int:
        """向房间内所有在线连接推送任意负载，返回成功投递数。"""
        room_key = normalize_room_id(room_id)
        delivered = await self.broadcaster.broadcast(self.index.member_ids(room_key), payload)
        logger.info("房间推送 | room=%s | type=%s | delivered=%d", room_key, payload.get("type"), delivered)
        return delivered

    def online_account_ids(self) -> list[int]:
        """当前在线账号（升序）。"""
        return sorted(self.presence.online_account_ids())
