"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures —— 用内存实现替换 MongoDB 持久化层和 WebSocket 传输，
使实时层的单元测试可在无数据库、无网络环境下快速运行。
"""
from __future__ import annotations

import itertools
import json
import os
import time
from collections.abc import Awaitable, Callable, Iterator
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("ENVIRONMENT", "test")  # 激活 .env.test 配置

from app.core.config import Settings  # noqa: E402
from app.core.exceptions import PersistenceError  # noqa: E402
from app.schemas.chat import MemberInfo, StoredMessage  # noqa: E402
from app.services.chat_hub import ChatHub  # noqa: E402


# ── 传输 Mock ─────────────────────────────────────────────────────────

class FakeTransport:
    """记录所有下发帧的假 WebSocket。``fail=True`` 时每次发送都抛异常。"""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.raw: list[str] = []
        self.close_codes: list[int] = []

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise ConnectionResetError("socket is gone")
        self.raw.append(data)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.close_codes.append(code)

    @property
    def sent(self) -> list[dict[str, Any]]:
        return [json.loads(frame) for frame in self.raw]

    def of_type(self, event_type: str) -> list[dict[str, Any]]:
        return [event for event in self.sent if event["type"] == event_type]

    def clear(self) -> None:
        self.raw.clear()


# ── 持久化 Mock ───────────────────────────────────────────────────────

class InMemoryChatStore:
    """``ChatStore`` 的内存实现。``fail_save`` / ``fail_load`` 用于模拟数据库故障。"""

    def __init__(self) -> None:
        self.members: dict[int | str, list[MemberInfo]] = {}
        self.messages: dict[int | str, list[StoredMessage]] = {}
        self.fail_save = False
        self.fail_load = False
        self.load_calls = 0
        self._ids = itertools.count(1)

    def add_member(self, room_id: int | str, user_id: int, username: str) -> None:
        self.members.setdefault(room_id, []).append(MemberInfo(id=user_id, username=username))

    async def get_members(self, room_id: int | str) -> list[MemberInfo]:
        self.load_calls += 1
        if self.fail_load:
            raise PersistenceError("members unavailable")
        return list(self.members.get(room_id, []))

    async def get_history(self, room_id: int | str, limit: int = 50) -> list[StoredMessage]:
        if self.fail_load:
            raise PersistenceError("history unavailable")
        return list(self.messages.get(room_id, []))[-limit:]

    async def save_message(
        self,
        room_id: int | str,
        sender_id: int | None,
        sender: str,
        text: str,
    ) -> StoredMessage:
        if self.fail_save:
            raise PersistenceError("write failed")
        message = StoredMessage(
            id=f"m{next(self._ids)}",
            sender=sender,
            text=text,
            ts=int(time.time() * 1000),
            sender_id=sender_id,
        )
        self.messages.setdefault(room_id, []).append(message)
        return message


# ── Fixtures ──────────────────────────────────────────────────────────

@pytest.fixture()
def test_settings() -> Settings:
    """测试配置：关闭消息限流，在线状态房间为 ``home``。"""
    return Settings(
        ENVIRONMENT="test",
        WS_MESSAGE_INTERVAL=0,
        HEARTBEAT_INTERVAL=30,
        PRESENCE_ROOM_ID="home",
    )


@pytest.fixture()
def store() -> InMemoryChatStore:
    return InMemoryChatStore()


@pytest.fixture()
def hub(store: InMemoryChatStore, test_settings: Settings) -> ChatHub:
    """每个用例独立的 ChatHub 实例。"""
    return ChatHub(store=store, settings=test_settings)


@pytest.fixture()
def open_conn(hub: ChatHub) -> Callable[..., tuple[str, FakeTransport]]:
    """返回工厂函数：登记一个假连接，得到 (连接 ID, 传输)。"""

    def _open(fail: bool = False) -> tuple[str, FakeTransport]:
        transport = FakeTransport(fail=fail)
        connection = hub.connect(transport)
        return connection.connection_id, transport

    return _open


@pytest.fixture()
def send(hub: ChatHub) -> Callable[..., Awaitable[None]]:
    """返回协程函数：以 JSON 文本帧的形式向协调器投递一个入站事件。"""

    async def _send(connection_id: str, **event: Any) -> None:
        await hub.coordinator.handle_raw(connection_id, json.dumps(event))

    return _send


@pytest.fixture()
def forbidden_words_repo() -> MagicMock:
    repo = MagicMock()
    repo.list_words = AsyncMock(return_value=[])
    repo.add_word = AsyncMock()
    repo.remove_word = AsyncMock(return_value=True)
    return repo


@pytest.fixture()
def test_app(hub: ChatHub, forbidden_words_repo: MagicMock) -> Iterator[FastAPI]:
    """挂载真实路由、但不连接 MongoDB 的测试应用。"""
    from slowapi import _rate_limit_exceeded_handler
    from slowapi.errors import RateLimitExceeded

    from app.api import room, ws
    from app.core.rate_limit import limiter

    application = FastAPI()
    application.state.limiter = limiter
    application.state.chat_hub = hub
    application.state.forbidden_words = forbidden_words_repo
    application.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    application.include_router(room.router, prefix="/api")
    application.include_router(ws.router)

    limiter.enabled = False
    yield application
    limiter.enabled = True
