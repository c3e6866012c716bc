"""
app.schemas.chat
~~~~~~~~~~~~~~~~

聊天领域的 Pydantic 模型 —— 持久化消息、群成员，以及 REST 请求/响应体。
"""
from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field


def normalize_room_id(value: Any) -> int | str:
    """统一房间标识：整数与纯数字字符串视为群组 ID，其余字符串原样保留。

    Raises:
        ValueError: 布尔值、空字符串或其他类型。
    """
    if isinstance(value, bool):
        raise ValueError("roomId must be an integer or a string")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValueError("roomId must not be empty")
        if stripped.isascii() and stripped.isdigit():
            return int(stripped)
        return stripped
    raise ValueError("roomId must be an integer or a string")


RoomId = Annotated[Union[int, str], BeforeValidator(normalize_room_id)]


class StoredMessage(BaseModel):
    """一条已持久化的聊天消息（服务端分配 ``id`` 与 ``ts``）。"""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="服务端分配的消息 ID")
    sender: str = Field(..., description="发送者显示名")
    text: str = Field(..., description="消息文本")
    ts: int = Field(..., description="服务端时间戳（毫秒）")
    # 仅服务端内部使用，不下发给客户端
    sender_id: int | None = Field(default=None, alias="senderId", exclude=True)


class MemberInfo(BaseModel):
    """房间成员摘要。"""

    id: int | str = Field(..., description="账号 ID（持久化成员）或连接 ID（在线状态房间）")
    username: str = Field(..., description="显示名")


# ── REST 请求/响应 ────────────────────────────────────────────────────

class ForbiddenWordRequest(BaseModel):
    """添加违禁词请求体。"""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    word: str = Field(..., min_length=1, max_length=64, description="违禁词（首尾空白会被去除）")
    added_by: int | None = Field(default=None, alias="addedBy", description="添加者账号 ID")


class ForbiddenWordData(BaseModel):
    """单个违禁词。"""

    model_config = ConfigDict(populate_by_name=True)

    word: str = Field(..., description="违禁词（小写）")
    group_id: int = Field(..., alias="groupId", serialization_alias="groupId", description="群组 ID")
    added_by: int | None = Field(default=None, alias="addedBy", serialization_alias="addedBy")
    created_at: datetime | None = Field(default=None, alias="createdAt", serialization_alias="createdAt")


class OnlineUsersData(BaseModel):
    """当前在线账号列表。"""

    model_config = ConfigDict(populate_by_name=True)

    user_ids: list[int] = Field(..., alias="userIds", serialization_alias="userIds")


class RoomMemberData(BaseModel):
    """房间内的一个在线连接。"""

    model_config = ConfigDict(populate_by_name=True)

    client_id: str = Field(..., alias="clientId", serialization_alias="clientId")
    username: str = Field(..., description="本次加入时使用的显示名")
