"""
app.services.presence
~~~~~~~~~~~~~~~~~~~~~

在线状态表 —— 账号 ID → 当前以该账号身份在线的连接 ID 集合。

在线是按账号而不是按连接计算的：同一个人开多个标签页 / 多台设备只算一次在线。
只有 0→1（上线）和 1→0（下线）两种边沿变化需要广播，1→2、2→1 保持静默。
"""
from __future__ import annotations

from app.core.logging import get_logger

logger = get_logger(__name__)


class PresenceTracker:
    """按账号聚合的在线状态。

    不变式：账号出现在表中当且仅当它至少有一个存活连接，集合永不为空。
    """

    def __init__(self) -> None:
        self._connections: dict[int, set[str]] = {}

    def mark_online(self, account_id: int, connection_id: str) -> bool:
        """记录连接上线。

        Returns:
            是否为该账号的第一个存活连接（即需要广播上线）。
        """
        connections = self._connections.get(account_id)
        if connections is None:
            self._connections[account_id] = {connection_id}
            logger.info("账号上线 | account=%s", account_id)
            return True
        connections.add(connection_id)
        return False

    def mark_offline(self, account_id: int, connection_id: str) -> bool:
        """移除连接。

        Returns:
            是否因为这次移除导致账号完全下线（即需要广播下线）。
            账号或连接本就不在表中时返回 ``False``。
        """
        connections = self._connections.get(account_id)
        if connections is None or connection_id not in connections:
            return False
        connections.discard(connection_id)
        if connections:
            return False
        del self._connections[account_id]
        logger.info("账号下线 | account=%s", account_id)
        return True

    def online_account_ids(self) -> set[int]:
        """当前在线账号的快照（拷贝，调用方可随意修改）。"""
        return set(self._connections)

    def connections_of(self, account_id: int) -> set[str]:
        """某账号当前的连接 ID 快照。"""
        return set(self._connections.get(account_id, ()))

    def is_online(self, account_id: int) -> bool:
        return account_id in self._connections
