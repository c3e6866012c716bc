"""
app.api.room
~~~~~~~~~~~~

房间 REST 接口 —— 在线状态查询 + 群组违禁词管理。

违禁词的增删会通过 ``ChatHub.broadcast_to_room()`` 实时推送给房间内的在线连接。

端点:
  - ``GET    /online-users``                          → 当前在线账号
  - ``GET    /rooms/{room_id}/members``               → 房间内的在线连接
  - ``GET    /groups/{group_id}/forbidden-words``     → 违禁词列表
  - ``POST   /groups/{group_id}/forbidden-words``     → 添加违禁词并推送 ``forbidden_word_added``
  - ``DELETE /groups/{group_id}/forbidden-words/{w}`` → 删除违禁词并推送 ``forbidden_word_removed``
"""
from fastapi import APIRouter, Depends, Request

from app.api.deps import get_chat_hub, get_forbidden_words
from app.core.exceptions import DuplicateWordError
from app.core.rate_limit import limiter
from app.db.forbidden_word_repository import ForbiddenWordRepository
from app.schemas.api_response import ApiResponse
from app.schemas.chat import (
    ForbiddenWordData,
    ForbiddenWordRequest,
    OnlineUsersData,
    RoomMemberData,
    normalize_room_id,
)
from app.services.chat_hub import ChatHub

router: APIRouter = APIRouter()


# ── 在线状态 ──────────────────────────────────────────────────────────

@router.get("/online-users", summary="当前在线账号", response_model=ApiResponse[OnlineUsersData])
@limiter.limit("10/second")
async def online_users(request: Request, hub: ChatHub = Depends(get_chat_hub)):
    """返回当前至少有一个存活连接的账号 ID（升序）。"""
    return ApiResponse.ok(data=OnlineUsersData(user_ids=hub.online_account_ids()))


@router.get("/rooms/{room_id}/members", summary="房间在线成员", response_model=ApiResponse[list[RoomMemberData]])
@limiter.limit("10/second")
async def room_members(request: Request, room_id: str, hub: ChatHub = Depends(get_chat_hub)):
    """返回当前加入该房间的连接及其显示名（按加入顺序）。"""
    try:
        room_key = normalize_room_id(room_id)
    except ValueError as e:
        return ApiResponse.fail_response(f"房间 ID 非法: {e}", status_code=400)
    entries = hub.index.members_of(room_key)
    return ApiResponse.ok(
        data=[RoomMemberData(client_id=e.connection_id, username=e.display_name) for e in entries],
    )


# ── 违禁词 ────────────────────────────────────────────────────────────

@router.get(
    "/groups/{group_id}/forbidden-words",
    summary="违禁词列表",
    response_model=ApiResponse[list[ForbiddenWordData]],
)
@limiter.limit("10/second")
async def list_forbidden_words(
    request: Request,
    group_id: int,
    repo: ForbiddenWordRepository = Depends(get_forbidden_words),
):
    words = await repo.list_words(group_id)
    return ApiResponse.ok(data=words)


@router.post(
    "/groups/{group_id}/forbidden-words",
    summary="添加违禁词",
    status_code=201,
    response_model=ApiResponse[ForbiddenWordData],
)
@limiter.limit("5/second")
async def add_forbidden_word(
    request: Request,
    group_id: int,
    body: ForbiddenWordRequest,
    repo: ForbiddenWordRepository = Depends(get_forbidden_words),
    hub: ChatHub = Depends(get_chat_hub),
):
    """添加违禁词，并向房间内所有在线连接推送 ``forbidden_word_added``。

    Args:
        request: FastAPI Request 对象（用于限流判断）。
        group_id: 群组 ID。
        body: 违禁词请求体。
    """
    try:
        word = await repo.add_word(group_id, body.word, added_by=body.added_by)
    except DuplicateWordError as e:
        return ApiResponse.fail_response(f"违禁词已存在: {e}", status_code=400)

    await hub.broadcast_to_room(group_id, {"type": "forbidden_word_added", "word": word.word})
    return ApiResponse.ok(data=word)


@router.delete(
    "/groups/{group_id}/forbidden-words/{word}",
    summary="删除违禁词",
    response_model=ApiResponse[None],
)
@limiter.limit("5/second")
async def remove_forbidden_word(
    request: Request,
    group_id: int,
    word: str,
    repo: ForbiddenWordRepository = Depends(get_forbidden_words),
    hub: ChatHub = Depends(get_chat_hub),
):
    """删除违禁词，并向房间推送 ``forbidden_word_removed``。不存在时返回 404。"""
    normalized = word.strip().lower()
    if not await repo.remove_word(group_id, normalized):
        return ApiResponse.fail_response("违禁词不存在", status_code=404)

    await hub.broadcast_to_room(group_id, {"type": "forbidden_word_removed", "word": normalized})
    return ApiResponse.ok(data=None)
