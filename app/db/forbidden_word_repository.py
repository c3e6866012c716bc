"""
app.db.forbidden_word_repository
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

群组违禁词仓库 —— 封装 MongoDB ``forbidden_words`` 集合。

同一群组内违禁词唯一（小写比较），由唯一索引保证。
"""
from __future__ import annotations

from datetime import datetime, timezone

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError, PyMongoError

from app.core.exceptions import DuplicateWordError, PersistenceError
from app.core.logging import get_logger
from app.schemas.chat import ForbiddenWordData

logger = get_logger(__name__)

_COLLECTION_NAME = "forbidden_words"


class ForbiddenWordRepository:
    """违禁词持久化仓库。

    Attributes:
        db: MongoDB 数据库实例。
    """

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self.db = db
        self._collection = db[_COLLECTION_NAME]
        self._indexes_created = False

    async def _ensure_indexes(self) -> None:
        if self._indexes_created:
            return
        await self._collection.create_index(
            [("group_id", 1), ("word", 1)],
            name="uniq_group_word",
            unique=True,
        )
        self._indexes_created = True

    async def list_words(self, group_id: int) -> list[ForbiddenWordData]:
        """列出群组的全部违禁词（按添加顺序）。"""
        try:
            await self._ensure_indexes()
            cursor = self._collection.find({"group_id": group_id}, {"_id": 0}).sort("_id", 1)
            docs = await cursor.to_list(length=None)
        except PyMongoError as e:
            raise PersistenceError(f"读取违禁词失败: group={group_id}") from e
        return [
            ForbiddenWordData(
                word=doc["word"],
                group_id=doc["group_id"],
                added_by=doc.get("added_by"),
                created_at=doc.get("created_at"),
            )
            for doc in docs
        ]

    async def add_word(self, group_id: int, word: str, added_by: int | None = None) -> ForbiddenWordData:
        """添加违禁词（统一转为小写）。

        Raises:
            DuplicateWordError: 该群组已存在同一违禁词。
            PersistenceError: MongoDB 写入失败。
        """
        normalized = word.strip().lower()
        doc = {
            "group_id": group_id,
            "word": normalized,
            "added_by": added_by,
            "created_at": datetime.now(timezone.utc),
        }
        try:
            await self._ensure_indexes()
            await self._collection.insert_one(doc)
        except DuplicateKeyError as e:
            raise DuplicateWordError(normalized) from e
        except PyMongoError as e:
            raise PersistenceError(f"保存违禁词失败: group={group_id}") from e

        logger.info("违禁词已添加 | group=%s | word=%s", group_id, normalized)
        return ForbiddenWordData(
            word=normalized,
            group_id=group_id,
            added_by=added_by,
            created_at=doc["created_at"],
        )

    async def remove_word(self, group_id: int, word: str) -> bool:
        """删除违禁词，返回是否确实删除了记录。"""
        normalized = word.strip().lower()
        try:
            result = await self._collection.delete_one({"group_id": group_id, "word": normalized})
        except PyMongoError as e:
            raise PersistenceError(f"删除违禁词失败: group={group_id}") from e
        return result.deleted_count > 0
