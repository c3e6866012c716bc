"""
app.schemas.ws_events
~~~~~~~~~~~~~~~~~~~~~

WebSocket 协议事件模型。

入站事件是以 ``type`` 为判别字段的联合类型（``JoinEvent | LeaveEvent |
SendEvent | ListEvent | PongEvent``），由 ``parse_inbound()`` 解析；
出站事件统一继承 ``OutboundEvent``，通过 ``payload()`` 得到下发的 JSON 字典。

入站:
  - ``{type:"join", roomId, username, userId?}``
  - ``{type:"leave", roomId}``
  - ``{type:"message", roomId, text, sender}``
  - ``{type:"list", roomId}``
  - ``{type:"pong"}`` —— 心跳回应

出站:
  ``joined`` / ``member_joined`` / ``member_left`` / ``message`` / ``list`` /
  ``error`` / ``online_users_update`` / ``ping``
"""
from __future__ import annotations

import json
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from app.core.exceptions import ProtocolError
from app.schemas.chat import MemberInfo, RoomId, StoredMessage

# 客户端可见的错误文案
INVALID_MESSAGE = "invalid_message"
UNKNOWN_TYPE = "unknown_type"


# ── 入站事件 ──────────────────────────────────────────────────────────

class _InboundEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class JoinEvent(_InboundEvent):
    """加入房间。``userId`` 的合法性由协调器校验，以便返回专门的错误提示。"""

    type: Literal["join"]
    room_id: RoomId = Field(..., alias="roomId")
    username: str = Field(..., min_length=1)
    user_id: Any = Field(default=None, alias="userId")


class LeaveEvent(_InboundEvent):
    type: Literal["leave"]
    room_id: RoomId = Field(..., alias="roomId")


class SendEvent(_InboundEvent):
    """发送聊天消息。``sender`` 仅作兜底，服务端优先使用加入房间时的显示名。"""

    type: Literal["message"]
    room_id: RoomId = Field(..., alias="roomId")
    text: str = Field(..., min_length=1)
    sender: str | None = None


class ListEvent(_InboundEvent):
    type: Literal["list"]
    room_id: RoomId = Field(..., alias="roomId")


class PongEvent(_InboundEvent):
    type: Literal["pong"]


InboundEvent = Annotated[
    Union[JoinEvent, LeaveEvent, SendEvent, ListEvent, PongEvent],
    Field(discriminator="type"),
]

INBOUND_TYPES: frozenset[str] = frozenset({"join", "leave", "message", "list", "pong"})

_inbound_adapter: TypeAdapter[Any] = TypeAdapter(InboundEvent)


def parse_inbound(raw: str | bytes) -> JoinEvent | LeaveEvent | SendEvent | ListEvent | PongEvent:
    """把一帧原始文本解析为入站事件。

    Raises:
        ProtocolError: JSON 非法、不是对象或字段校验失败时为 ``invalid_message``；
            ``type`` 不在协议内时为 ``unknown_type``。
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError, RecursionError) as e:
        raise ProtocolError(INVALID_MESSAGE) from e

    if not isinstance(data, dict):
        raise ProtocolError(INVALID_MESSAGE)
    event_type = data.get("type")
    if not isinstance(event_type, str) or event_type not in INBOUND_TYPES:
        raise ProtocolError(UNKNOWN_TYPE)

    try:
        return _inbound_adapter.validate_python(data)
    except ValidationError as e:
        raise ProtocolError(INVALID_MESSAGE) from e


# ── 出站事件 ──────────────────────────────────────────────────────────

class OutboundEvent(BaseModel):
    """出站事件基类。"""

    model_config = ConfigDict(populate_by_name=True)

    def payload(self) -> dict[str, Any]:
        """序列化为下发给客户端的 JSON 字典（字段使用 camelCase 别名）。"""
        return self.model_dump(by_alias=True, mode="json")


class JoinedEvent(OutboundEvent):
    type: Literal["joined"] = "joined"
    room_id: int | str = Field(..., alias="roomId")
    members: list[MemberInfo] = Field(default_factory=list)
    history: list[StoredMessage] = Field(default_factory=list)


class MemberJoinedEvent(OutboundEvent):
    type: Literal["member_joined"] = "member_joined"
    user: str
    client_id: str = Field(..., alias="clientId")


class MemberLeftEvent(OutboundEvent):
    type: Literal["member_left"] = "member_left"
    user: str
    client_id: str = Field(..., alias="clientId")


class MessageEvent(OutboundEvent):
    type: Literal["message"] = "message"
    message: StoredMessage


class ListResultEvent(OutboundEvent):
    type: Literal["list"] = "list"
    members: list[MemberInfo] = Field(default_factory=list)
    history: list[StoredMessage] = Field(default_factory=list)


class OnlineUsersUpdateEvent(OutboundEvent):
    type: Literal["online_users_update"] = "online_users_update"
    user_ids: list[int] = Field(..., alias="userIds")


class ErrorEvent(OutboundEvent):
    type: Literal["error"] = "error"
    message: str


class PingEvent(OutboundEvent):
    type: Literal["ping"] = "ping"
