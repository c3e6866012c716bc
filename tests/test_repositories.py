"""
tests.test_repositories
~~~~~~~~~~~~~~~~~~~~~~~

MongoDB 仓库层测试 —— 使用 Mock 集合，不连接真实数据库。
"""
from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId
from pymongo.errors import DuplicateKeyError, ServerSelectionTimeoutError

from app.core.exceptions import DuplicateWordError, PersistenceError
from app.db.chat_repository import ChatRepository
from app.db.forbidden_word_repository import ForbiddenWordRepository


def _mock_collection(docs: list[dict] | None = None) -> MagicMock:
    """构造 motor 集合 Mock：find().sort().limit() 链式调用最终返回 docs。"""
    collection = MagicMock()
    collection.create_index = AsyncMock()
    collection.insert_one = AsyncMock(return_value=MagicMock(inserted_id=ObjectId()))
    collection.delete_one = AsyncMock(return_value=MagicMock(deleted_count=1))

    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.limit.return_value = cursor
    cursor.to_list = AsyncMock(return_value=docs or [])
    collection.find.return_value = cursor
    return collection


def _mock_db(**collections: MagicMock) -> MagicMock:
    db = MagicMock()
    db.__getitem__.side_effect = lambda name: collections[name]
    return db


# ── ChatRepository ────────────────────────────────────────────────────

class TestChatRepository:
    """测试聊天仓库。"""

    @pytest.mark.asyncio
    async def test_save_message_assigns_id_and_ts(self) -> None:
        messages = _mock_collection()
        repo = ChatRepository(_mock_db(messages=messages, group_members=_mock_collection()))

        saved = await repo.save_message(42, 1, "alice", "  原样保存  ")

        doc = messages.insert_one.call_args[0][0]
        assert doc["group_id"] == 42
        assert doc["sender_id"] == 1
        assert doc["text"] == "  原样保存  "
        assert doc["created_at"].microsecond % 1000 == 0
        assert saved.id == str(messages.insert_one.return_value.inserted_id)
        assert saved.ts == int(doc["created_at"].timestamp() * 1000)
        assert saved.sender == "alice"

    @pytest.mark.asyncio
    async def test_history_returned_oldest_first(self) -> None:
        newest = {
            "_id": ObjectId(), "group_id": 42, "sender_id": 2, "sender": "bob", "text": "second",
            "created_at": datetime(2024, 1, 1, 0, 0, 2, tzinfo=timezone.utc),
        }
        oldest = {
            "_id": ObjectId(), "group_id": 42, "sender_id": 1, "sender": "alice", "text": "first",
            # 无时区信息按 UTC 处理
            "created_at": datetime(2024, 1, 1, 0, 0, 1),
        }
        messages = _mock_collection([newest, oldest])
        repo = ChatRepository(_mock_db(messages=messages, group_members=_mock_collection()))

        history = await repo.get_history(42, limit=2)

        messages.find.assert_called_once_with({"group_id": 42})
        messages.find.return_value.sort.assert_called_once_with("created_at", -1)
        messages.find.return_value.limit.assert_called_once_with(2)
        assert [m.text for m in history] == ["first", "second"]
        assert history[0].ts == 1704067201000

    @pytest.mark.asyncio
    async def test_get_members(self) -> None:
        members = _mock_collection([
            {"user_id": 1, "username": "alice"},
            {"user_id": 2, "username": "bob"},
        ])
        repo = ChatRepository(_mock_db(messages=_mock_collection(), group_members=members))

        result = await repo.get_members(42)

        assert [(m.id, m.username) for m in result] == [(1, "alice"), (2, "bob")]

    @pytest.mark.asyncio
    async def test_indexes_created_once(self) -> None:
        messages = _mock_collection()
        members = _mock_collection()
        repo = ChatRepository(_mock_db(messages=messages, group_members=members))

        await repo.get_history(1)
        await repo.get_members(1)

        messages.create_index.assert_awaited_once()
        members.create_index.assert_awaited_once()
        assert members.create_index.call_args.kwargs["unique"] is True

    @pytest.mark.asyncio
    async def test_driver_errors_become_persistence_errors(self) -> None:
        messages = _mock_collection()
        messages.insert_one = AsyncMock(side_effect=ServerSelectionTimeoutError("no primary"))
        members = _mock_collection()
        members.find.return_value.to_list = AsyncMock(side_effect=ServerSelectionTimeoutError("no primary"))
        repo = ChatRepository(_mock_db(messages=messages, group_members=members))

        with pytest.raises(PersistenceError):
            await repo.save_message(42, 1, "alice", "hi")
        with pytest.raises(PersistenceError):
            await repo.get_members(42)


# ── ForbiddenWordRepository ───────────────────────────────────────────

class TestForbiddenWordRepository:
    """测试违禁词仓库。"""

    @pytest.mark.asyncio
    async def test_add_word_is_lowercased(self) -> None:
        collection = _mock_collection()
        repo = ForbiddenWordRepository(_mock_db(forbidden_words=collection))

        word = await repo.add_word(7, "  SPAM ", added_by=1)

        doc = collection.insert_one.call_args[0][0]
        assert doc["word"] == "spam"
        assert word.word == "spam"
        assert word.group_id == 7
        assert word.added_by == 1

    @pytest.mark.asyncio
    async def test_duplicate_word(self) -> None:
        collection = _mock_collection()
        collection.insert_one = AsyncMock(side_effect=DuplicateKeyError("E11000"))
        repo = ForbiddenWordRepository(_mock_db(forbidden_words=collection))

        with pytest.raises(DuplicateWordError):
            await repo.add_word(7, "spam")

    @pytest.mark.asyncio
    async def test_list_words(self) -> None:
        collection = _mock_collection([
            {"group_id": 7, "word": "spam", "added_by": 1, "created_at": datetime(2024, 1, 1, tzinfo=timezone.utc)},
            {"group_id": 7, "word": "scam"},
        ])
        repo = ForbiddenWordRepository(_mock_db(forbidden_words=collection))

        words = await repo.list_words(7)

        assert [w.word for w in words] == ["spam", "scam"]
        assert words[1].added_by is None

    @pytest.mark.asyncio
    async def test_remove_word(self) -> None:
        collection = _mock_collection()
        repo = ForbiddenWordRepository(_mock_db(forbidden_words=collection))

        assert await repo.remove_word(7, "SPAM") is True
        collection.delete_one.assert_awaited_once_with({"group_id": 7, "word": "spam"})

        collection.delete_one = AsyncMock(return_value=MagicMock(deleted_count=0))
        assert await repo.remove_word(7, "ghost") is False
