"""
app.services.room
~~~~~~~~~~~~~~~~~

房间成员索引 —— 房间 ID → 已加入该房间的连接（附带本次加入使用的显示名）。

房间本身没有独立的生命周期：首次加入时隐式创建，最后一个连接离开后
对应的键被移除。索引与在线状态表相互独立，匿名连接也可以加入房间。
"""
from __future__ import annotations

from dataclasses import dataclass

from app.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class MembershipEntry:
    """一个（房间，连接）配对。"""

    room_id: int | str
    connection_id: str
    display_name: str


@dataclass(frozen=True)
class JoinResult:
    """``join()`` 的结果。``is_new_join`` 为 ``False`` 表示刷新重进。"""

    is_new_join: bool
    entry: MembershipEntry


class RoomMembershipIndex:
    """房间成员索引，同时维护连接 → 房间的反向索引用于断线清理。

    每个房间内部是按插入顺序排列的 dict，同一连接在一个房间内最多出现一次。
    """

    def __init__(self) -> None:
        self._rooms: dict[int | str, dict[str, MembershipEntry]] = {}
        self._rooms_by_connection: dict[str, dict[int | str, None]] = {}

    def join(self, room_id: int | str, connection_id: str, display_name: str) -> JoinResult:
        """加入房间；重复加入只原地更新显示名，不产生新条目。"""
        members = self._rooms.setdefault(room_id, {})
        # 先读后写，才能得到准确的 is_new_join
        is_new_join = connection_id not in members
        entry = MembershipEntry(room_id=room_id, connection_id=connection_id, display_name=display_name)
        members[connection_id] = entry
        self._rooms_by_connection.setdefault(connection_id, {})[room_id] = None
        if is_new_join:
            logger.debug("加入房间 | room=%s | 成员数: %d", room_id, len(members))
        return JoinResult(is_new_join=is_new_join, entry=entry)

    def leave(self, room_id: int | str, connection_id: str) -> MembershipEntry | None:
        """离开房间，返回被移除的条目；本就不在房间内时返回 ``None``。"""
        members = self._rooms.get(room_id)
        if members is None:
            return None
        entry = members.pop(connection_id, None)
        if entry is None:
            return None
        if not members:
            del self._rooms[room_id]

        rooms = self._rooms_by_connection.get(connection_id)
        if rooms is not None:
            rooms.pop(room_id, None)
            if not rooms:
                del self._rooms_by_connection[connection_id]
        logger.debug("离开房间 | room=%s | 剩余成员: %d", room_id, len(members))
        return entry

    def members_of(self, room_id: int | str) -> list[MembershipEntry]:
        """房间成员（按加入顺序）。"""
        return list(self._rooms.get(room_id, {}).values())

    def member_ids(self, room_id: int | str) -> list[str]:
        """房间内的连接 ID（按加入顺序）。"""
        return list(self._rooms.get(room_id, {}))

    def is_member(self, room_id: int | str, connection_id: str) -> bool:
        return connection_id in self._rooms.get(room_id, {})

    def get_entry(self, room_id: int | str, connection_id: str) -> MembershipEntry | None:
        return self._rooms.get(room_id, {}).get(connection_id)

    def rooms_of(self, connection_id: str) -> list[int | str]:
        """连接当前所在的房间（按加入顺序）。"""
        return list(self._rooms_by_connection.get(connection_id, {}))

    def room_ids(self) -> list[int | str]:
        """当前非空房间的快照。"""
        return list(self._rooms)
