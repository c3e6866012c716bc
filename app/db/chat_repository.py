"""
app.db.chat_repository
~~~~~~~~~~~~~~~~~~~~~~

聊天持久化仓库 —— 封装 MongoDB ``group_members`` / ``messages`` 集合的增查操作。

每条消息一个文档（扁平设计），避免 16MB 文档限制且便于分页查询。
集合在首次访问时自动建立索引。
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import TypedDict

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from app.core.exceptions import PersistenceError
from app.core.logging import get_logger
from app.schemas.chat import MemberInfo, StoredMessage

logger = get_logger(__name__)

# 集合名称
_MEMBERS_COLLECTION = "group_members"
_MESSAGES_COLLECTION = "messages"


class MessageDocument(TypedDict):
    """代表 MongoDB 中 messages 集合的单条记录"""
    _id: ObjectId
    group_id: int | str
    sender_id: int | None
    sender: str
    text: str
    created_at: datetime


def _to_millis(value: datetime) -> int:
    """datetime → 毫秒时间戳（无时区信息的按 UTC 处理）。"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def _to_stored_message(doc: MessageDocument) -> StoredMessage:
    return StoredMessage(
        id=str(doc["_id"]),
        sender=doc["sender"],
        text=doc["text"],
        ts=_to_millis(doc["created_at"]),
        sender_id=doc.get("sender_id"),
    )


class ChatRepository:
    """群成员与聊天消息持久化仓库，实现 ``ChatStore`` 接口。

    Attributes:
        db: MongoDB 数据库实例。
    """

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self.db = db
        self._members = db[_MEMBERS_COLLECTION]
        self._messages = db[_MESSAGES_COLLECTION]
        self._indexes_created = False

    async def _ensure_indexes(self) -> None:
        """确保索引已创建（惰性，首次操作时执行一次）。"""
        if self._indexes_created:
            return
        # 复合索引：按群组分区 + 按时间排序
        await self._messages.create_index(
            [("group_id", 1), ("created_at", 1)],
            name="idx_group_time",
        )
        await self._members.create_index(
            [("group_id", 1), ("user_id", 1)],
            name="uniq_group_user",
            unique=True,
        )
        self._indexes_created = True
        logger.debug("messages / group_members 索引已就绪")

    async def get_members(self, room_id: int | str) -> list[MemberInfo]:
        """获取群组的全部成员（按加入顺序）。

        Args:
            room_id: 群组 ID。

        Returns:
            ``MemberInfo`` 列表，``id`` 为账号 ID。

        Raises:
            PersistenceError: MongoDB 访问失败。
        """
        try:
            await self._ensure_indexes()
            cursor = (
                self._members
                .find({"group_id": room_id}, {"_id": 0, "user_id": 1, "username": 1})
                .sort("_id", 1)
            )
            docs = await cursor.to_list(length=None)
        except PyMongoError as e:
            raise PersistenceError(f"读取群成员失败: room={room_id}") from e
        return [MemberInfo(id=doc["user_id"], username=doc["username"]) for doc in docs]

    async def get_history(self, room_id: int | str, limit: int = 50) -> list[StoredMessage]:
        """获取指定群组最近 N 条消息（按时间正序）。

        Args:
            room_id: 群组 ID。
            limit: 最大返回条数。

        Raises:
            PersistenceError: MongoDB 访问失败。
        """
        try:
            await self._ensure_indexes()
            # 先按时间倒序取最近 N 条，再反转为正序
            cursor = (
                self._messages
                .find({"group_id": room_id})
                .sort("created_at", -1)
                .limit(limit)
            )
            docs = await cursor.to_list(length=limit)
        except PyMongoError as e:
            raise PersistenceError(f"读取历史消息失败: room={room_id}") from e
        docs.reverse()
        return [_to_stored_message(doc) for doc in docs]

    async def save_message(
        self,
        room_id: int | str,
        sender_id: int | None,
        sender: str,
        text: str,
    ) -> StoredMessage:
        """保存一条聊天消息，返回带服务端 ``id`` / ``ts`` 的消息。

        Args:
            room_id: 群组 ID。
            sender_id: 发送者账号 ID（匿名连接为 ``None``）。
            sender: 发送者显示名。
            text: 消息文本，原样保存。

        Raises:
            PersistenceError: MongoDB 写入失败。
        """
        now = datetime.now(timezone.utc)
        doc = {
            "group_id": room_id,
            "sender_id": sender_id,
            "sender": sender,
            "text": text,
            # Mongo 只保存到毫秒精度
            "created_at": now.replace(microsecond=now.microsecond // 1000 * 1000),
        }
        try:
            await self._ensure_indexes()
            result = await self._messages.insert_one(doc)
        except PyMongoError as e:
            raise PersistenceError(f"保存消息失败: room={room_id}") from e
        doc["_id"] = result.inserted_id
        return _to_stored_message(doc)
