"""
app.db.store
~~~~~~~~~~~~

实时层依赖的持久化接口。

``RoomCoordinator`` 只通过 ``ChatStore`` 访问持久化数据，生产环境由
``ChatRepository``（MongoDB）实现，测试中可替换为内存实现。
"""
from __future__ import annotations

from typing import Protocol

from app.schemas.chat import MemberInfo, StoredMessage


class ChatStore(Protocol):
    """房间成员、历史消息与消息写入。所有方法失败时抛出 ``PersistenceError``。"""

    async def get_members(self, room_id: int | str) -> list[MemberInfo]: ...

    async def get_history(self, room_id: int | str, limit: int = 50) -> list[StoredMessage]: ...

    async def save_message(
        self,
        room_id: int | str,
        sender_id: int | None,
        sender: str,
        text: str,
    ) -> StoredMessage: ...
