"""
app.services.coordinator
~~~~~~~~~~~~~~~~~~~~~~~~

房间协调器 —— 实时通道的协议状态机。

解析入站事件，修改 ``RoomMembershipIndex`` / ``PresenceTracker``，调用持久化层，
并决定向谁广播什么。状态按（连接，房间）维护，账号身份是连接级的附加信息：
连接在第一次携带 ``userId`` 的 join 之后进入已认证状态。

调度模型:
  所有事件都在同一个事件循环里处理，唯一的挂起点是持久化调用和发送。
  每个处理函数都先完成同步的内存修改，再进入 ``await``；``await`` 之后
  如果后续逻辑依赖连接仍然存在，需要重新检查。

错误处理:
  任何异常都不会越过单个事件的边界。协议/校验错误、持久化失败都转换为
  只发给来源连接的 ``error`` 事件，连接保持打开。
"""
from __future__ import annotations

import re
from typing import Any

from app.core.exceptions import PersistenceError, ProtocolError
from app.core.logging import get_logger
from app.core.rate_limit import WebSocketRateLimiter
from app.db.store import ChatStore
from app.schemas.chat import MemberInfo, normalize_room_id
from app.schemas.ws_events import (
    INVALID_MESSAGE,
    ErrorEvent,
    JoinedEvent,
    JoinEvent,
    LeaveEvent,
    ListEvent,
    ListResultEvent,
    MemberJoinedEvent,
    MemberLeftEvent,
    MessageEvent,
    OnlineUsersUpdateEvent,
    PongEvent,
    SendEvent,
    parse_inbound,
)
from app.services.connection import Connection, ConnectionRegistry
from app.services.presence import PresenceTracker
from app.services.room import MembershipEntry, RoomMembershipIndex
from app.services.room_broadcaster import Broadcaster

logger = get_logger(__name__)

# 客户端可见的错误文案
INVALID_USER_ID = "Invalid userId"
USER_ID_MISMATCH = "userId does not match this connection"
NOT_A_MEMBER = "Not a member of this room"
PRESENCE_ROOM_SEND = "Cannot send messages to the presence room"
RATE_LIMITED = "rate_limited"
LOAD_FAILED = "Failed to load room"
SAVE_FAILED = "Failed to save message"
INTERNAL_ERROR = "internal_error"

_INT_PATTERN = re.compile(r"[+-]?\d+")


def parse_account_id(value: Any) -> int:
    """把 join 事件中的 ``userId`` 解析为整数账号 ID。

    Raises:
        ProtocolError: 无法解析为整数。
    """
    if isinstance(value, bool):
        raise ProtocolError(INVALID_USER_ID)
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and _INT_PATTERN.fullmatch(value.strip()):
        return int(value.strip())
    raise ProtocolError(INVALID_USER_ID)


class RoomCoordinator:
    """协议状态机。

    Attributes:
        registry: 连接注册表。
        presence: 在线状态表。
        index: 房间成员索引。
        broadcaster: 广播器。
        store: 持久化接口。
        presence_room_id: 全局在线状态房间（不落库、不广播成员进出）。
        history_limit: joined / list 响应携带的历史条数。
        rate_limiter: 聊天消息限流器。
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        presence: PresenceTracker,
        index: RoomMembershipIndex,
        broadcaster: Broadcaster,
        store: ChatStore,
        presence_room_id: int | str = "home",
        history_limit: int = 50,
        rate_limiter: WebSocketRateLimiter | None = None,
    ) -> None:
        self.registry = registry
        self.presence = presence
        self.index = index
        self.broadcaster = broadcaster
        self.store = store
        self.presence_room_id = normalize_room_id(presence_room_id)
        self.history_limit = history_limit
        self.rate_limiter = rate_limiter or WebSocketRateLimiter(interval_seconds=0)

    def is_presence_room(self, room_id: int | str) -> bool:
        return room_id == self.presence_room_id

    # ── 入口 ──────────────────────────────────────────────────────────

    async def handle_raw(self, connection_id: str, raw: str | bytes) -> None:
        """处理一帧原始入站数据。任何一帧都视为连接存活的证据。"""
        connection = self.registry.lookup(connection_id)
        if connection is None:
            return
        connection.is_alive = True

        try:
            event = parse_inbound(raw)
        except ProtocolError as e:
            logger.info("入站事件无法解析: %s", e.message)
            await self._reply_error(connection_id, e.message)
            return
        except Exception:
            logger.warning("入站事件解析异常", exc_info=True)
            await self._reply_error(connection_id, INVALID_MESSAGE)
            return

        await self.dispatch(connection, event)

    async def dispatch(
        self,
        connection: Connection,
        event: JoinEvent | LeaveEvent | SendEvent | ListEvent | PongEvent,
    ) -> None:
        """按事件类型分派，并把异常转换为 ``error`` 事件。"""
        try:
            match event:
                case JoinEvent():
                    await self.handle_join(connection, event)
                case LeaveEvent():
                    await self.handle_leave(connection, event)
                case SendEvent():
                    await self.handle_send(connection, event)
                case ListEvent():
                    await self.handle_list(connection, event)
                case PongEvent():
                    connection.is_alive = True
        except ProtocolError as e:
            logger.info("拒绝 %s 事件: %s", event.type, e.message)
            await self._reply_error(connection.connection_id, e.message)
        except Exception:
            logger.error("处理 %s 事件时发生未预期异常", event.type, exc_info=True)
            await self._reply_error(connection.connection_id, INTERNAL_ERROR)

    # ── join ──────────────────────────────────────────────────────────

    async def handle_join(self, connection: Connection, event: JoinEvent) -> None:
        """加入房间。

        出站:
          - 请求方：``joined``（持久化读取失败时改为 ``error``）
          - 房间：``member_joined``，仅限首次加入且非在线状态房间
          - 全体连接：``online_users_update``，仅限账号的第一个连接
        """
        connection_id = connection.connection_id
        room_id = event.room_id

        if event.user_id is not None:
            account_id = parse_account_id(event.user_id)
            if connection.account_id is not None and connection.account_id != account_id:
                raise ProtocolError(USER_ID_MISMATCH)
            connection.account_id = account_id

        became_online = False
        if connection.account_id is not None:
            became_online = self.presence.mark_online(connection.account_id, connection_id)
        result = self.index.join(room_id, connection_id, event.username)
        logger.info(
            "join | room=%s | user=%s | account=%s | new=%s",
            room_id, event.username, connection.account_id, result.is_new_join,
        )

        if self.is_presence_room(room_id):
            await self.broadcaster.send(connection_id, JoinedEvent(room_id=room_id).payload())
            if became_online:
                await self._broadcast_online_users()
            return

        reply: dict[str, Any]
        try:
            members = await self.store.get_members(room_id)
            history = await self.store.get_history(room_id, limit=self.history_limit)
            reply = JoinedEvent(room_id=room_id, members=members, history=history).payload()
        except PersistenceError:
            logger.error("加载房间失败 | room=%s", room_id, exc_info=True)
            reply = ErrorEvent(message=LOAD_FAILED).payload()

        # await 期间连接可能已断开并完成清理，此时不再回复或广播
        if connection_id not in self.registry:
            logger.debug("join 完成时连接已断开 | room=%s", room_id)
            return

        await self.broadcaster.send(connection_id, reply)
        if result.is_new_join:
            await self.broadcaster.broadcast(
                self.index.member_ids(room_id),
                MemberJoinedEvent(user=event.username, client_id=connection_id).payload(),
            )
        if became_online:
            await self._broadcast_online_users()

    # ── leave ─────────────────────────────────────────────────────────

    async def handle_leave(self, connection: Connection, event: LeaveEvent) -> None:
        """离开房间。不在房间内时静默忽略。"""
        entry = self.index.leave(event.room_id, connection.connection_id)
        if entry is None:
            logger.debug("重复 leave 已忽略 | room=%s", event.room_id)
            return
        went_offline = self._release_presence(connection)
        logger.info("leave | room=%s | user=%s", entry.room_id, entry.display_name)

        await self._announce_left(entry)
        if went_offline:
            await self._broadcast_online_users()

    # ── message ───────────────────────────────────────────────────────

    async def handle_send(self, connection: Connection, event: SendEvent) -> None:
        """持久化并广播一条聊天消息。

        发送者身份取自连接本身（账号 ID + 加入房间时的显示名），
        不采用客户端自报的 ``sender``。持久化失败只通知发送者，不广播。
        """
        connection_id = connection.connection_id
        room_id = event.room_id

        if self.is_presence_room(room_id):
            raise ProtocolError(PRESENCE_ROOM_SEND)
        entry = self.index.get_entry(room_id, connection_id)
        if entry is None:
            raise ProtocolError(NOT_A_MEMBER)
        if not self.rate_limiter.is_allowed(connection_id):
            raise ProtocolError(RATE_LIMITED)

        try:
            message = await self.store.save_message(
                room_id, connection.account_id, entry.display_name, event.text,
            )
        except PersistenceError:
            logger.error("消息保存失败 | room=%s", room_id, exc_info=True)
            await self._reply_error(connection_id, SAVE_FAILED)
            return

        await self.broadcaster.broadcast(
            self.index.member_ids(room_id),
            MessageEvent(message=message).payload(),
        )

    # ── list ──────────────────────────────────────────────────────────

    async def handle_list(self, connection: Connection, event: ListEvent) -> None:
        """只回复请求方：当前成员与历史消息。"""
        room_id = event.room_id

        if self.is_presence_room(room_id):
            members = [
                MemberInfo(id=entry.connection_id, username=entry.display_name)
                for entry in self.index.members_of(room_id)
            ]
            reply = ListResultEvent(members=members).payload()
        else:
            try:
                members = await self.store.get_members(room_id)
                history = await self.store.get_history(room_id, limit=self.history_limit)
            except PersistenceError:
                logger.error("加载房间失败 | room=%s", room_id, exc_info=True)
                await self._reply_error(connection.connection_id, LOAD_FAILED)
                return
            reply = ListResultEvent(members=members, history=history).payload()

        await self.broadcaster.send(connection.connection_id, reply)

    # ── disconnect ────────────────────────────────────────────────────

    async def handle_disconnect(self, connection_id: str) -> None:
        """连接关闭（主动断开或心跳超时）后的清理。幂等。

        对连接所在的每个房间执行一次与 leave 相同的清理和广播，
        若账号因此完全下线，再向全体连接广播在线列表。
        """
        connection = self.registry.unregister(connection_id)
        if connection is None:
            return

        left: list[MembershipEntry] = []
        for room_id in self.index.rooms_of(connection_id):
            entry = self.index.leave(room_id, connection_id)
            if entry is not None:
                left.append(entry)
        went_offline = self._release_presence(connection)
        self.rate_limiter.remove_client(connection_id)
        logger.info("断开清理 | rooms=%s | account=%s", [entry.room_id for entry in left], connection.account_id)

        for entry in left:
            await self._announce_left(entry)
        if went_offline:
            await self._broadcast_online_users()

    # ── 内部工具 ──────────────────────────────────────────────────────

    def _release_presence(self, connection: Connection) -> bool:
        """连接不再属于任何房间时撤销其在线登记，返回账号是否因此下线。"""
        if connection.account_id is None:
            return False
        if self.index.rooms_of(connection.connection_id):
            return False
        return self.presence.mark_offline(connection.account_id, connection.connection_id)

    async def _announce_left(self, entry: MembershipEntry) -> None:
        if self.is_presence_room(entry.room_id):
            return
        await self.broadcaster.broadcast(
            self.index.member_ids(entry.room_id),
            MemberLeftEvent(user=entry.display_name, client_id=entry.connection_id).payload(),
        )

    async def _broadcast_online_users(self) -> None:
        user_ids = sorted(self.presence.online_account_ids())
        await self.broadcaster.broadcast_to_all(OnlineUsersUpdateEvent(user_ids=user_ids).payload())

    async def _reply_error(self, connection_id: str, message: str) -> None:
        await self.broadcaster.send(connection_id, ErrorEvent(message=message).payload())
