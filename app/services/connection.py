"""
app.services.connection
~~~~~~~~~~~~~~~~~~~~~~~

WebSocket 连接注册表 —— 把每个物理连接的 ID 映射到它的传输句柄。

房间成员索引与在线状态表都只保存连接 ID，需要发送时统一通过
``ConnectionRegistry.lookup()`` 解析，连接一旦注销就自然变成“查无此人”。
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Protocol

from app.core.logging import get_logger

logger = get_logger(__name__)


class Transport(Protocol):
    """可发送文本帧并可被关闭的传输句柄（Starlette ``WebSocket`` 即满足）。"""

    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000, reason: str | None = None) -> None: ...


@dataclass(eq=False)
class Connection:
    """一个存活的传输会话。

    Attributes:
        connection_id: 连接 ID，进程生命周期内唯一。
        transport: 底层传输句柄。
        is_alive: 心跳标记，探测发出时置为 ``False``，收到回应后恢复 ``True``。
        account_id: 首次携带 ``userId`` 的 join 之后记录的账号 ID。
        closed: 被心跳淘汰时置位，用于结束该连接的读循环。
    """

    connection_id: str
    transport: Transport
    is_alive: bool = True
    account_id: int | None = None
    closed: asyncio.Event = field(default_factory=asyncio.Event)


class ConnectionResolver(Protocol):
    """广播器依赖的最小能力：按连接 ID 解析出可发送的连接。"""

    def lookup(self, connection_id: str) -> Connection | None: ...

    def connection_ids(self) -> list[str]: ...


class ConnectionRegistry:
    """进程内的连接注册表。

    不加锁：所有读写都发生在同一个事件循环里。

    Attributes:
        active_connections: 连接 ID → ``Connection``。
    """

    def __init__(self) -> None:
        self.active_connections: dict[str, Connection] = {}

    def register(self, connection_id: str, transport: Transport) -> Connection:
        """登记新连接。``connection_id`` 由调用方新生成，不会重复。"""
        connection = Connection(connection_id=connection_id, transport=transport)
        self.active_connections[connection_id] = connection
        logger.debug("连接已登记 | 当前连接数: %d", len(self.active_connections))
        return connection

    def lookup(self, connection_id: str) -> Connection | None:
        """查找连接，已注销的返回 ``None``。"""
        return self.active_connections.get(connection_id)

    def unregister(self, connection_id: str) -> Connection | None:
        """注销连接。幂等：重复注销直接返回 ``None``。"""
        connection = self.active_connections.pop(connection_id, None)
        if connection is not None:
            logger.debug("连接已注销 | 当前连接数: %d", len(self.active_connections))
        return connection

    def connection_ids(self) -> list[str]:
        """当前所有连接 ID 的快照。"""
        return list(self.active_connections)

    def connections(self) -> list[Connection]:
        """当前所有连接的快照。"""
        return list(self.active_connections.values())

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self.active_connections

    def __len__(self) -> int:
        return len(self.active_connections)
