"""
chatroom.api.rooms
~~~~~~~~~~~~~~~~~~

房间与用户名的 REST 查询接口。只读，不会创建房间。

端点:
  - ``GET /rooms``                              → 活跃房间列表
  - ``GET /rooms/{room_id}``                    → 房间详情（不存在返回 404）
  - ``GET /rooms/{room_id}/history``            → 房间保留的历史消息
  - ``GET /usernames/{username}/availability``  → 用户名可用性检查
  - ``GET /personas``                           → 静态角色列表
"""
from fastapi import APIRouter, Depends, Query, Request

from chatroom.core.rate_limit import limiter
from chatroom.schemas.api_response import ApiResponse
from chatroom.schemas.rooms import (
    HistoryResponseData,
    PersonaInfoData,
    RoomInfoData,
    UsernameStatusData,
)
from chatroom.services.chat_system import ChatSystem
from chatroom.api.deps import get_chat_system

router: APIRouter = APIRouter()


# ── 房间 ──────────────────────────────────────────────────────────────

@router.get("/rooms", summary="获取活跃房间列表", response_model=ApiResponse[list[RoomInfoData]])
@limiter.limit("10/second")
async def list_rooms(request: Request, system: ChatSystem = Depends(get_chat_system)):
    """返回所有活跃房间的摘要。"""
    return ApiResponse.ok(data=system.store.list_rooms())


@router.get("/rooms/{room_id}", summary="获取房间详情", response_model=ApiResponse[RoomInfoData])
@limiter.limit("10/second")
async def room_info(request: Request, room_id: str, system: ChatSystem = Depends(get_chat_system)):
    """返回指定房间的摘要；房间不存在时返回 404，不会自动创建。"""
    room = system.store.get(room_id)
    if room is None:
        return ApiResponse.room_not_found(room_id)
    return ApiResponse.ok(data=room.info())


@router.get(
    "/rooms/{room_id}/history",
    summary="获取对话历史",
    response_model=ApiResponse[HistoryResponseData],
)
@limiter.limit("10/second")
async def get_history(
    request: Request,
    room_id: str,
    limit: int | None = Query(None, ge=1, description="最多返回条数，默认返回全部保留消息"),
    system: ChatSystem = Depends(get_chat_system),
):
    """返回房间当前保留的历史消息（旧 → 新）。"""
    if room_id not in system.store:
        return ApiResponse.room_not_found(room_id)
    messages = system.ledger.recent(room_id, limit)
    return ApiResponse.ok(
        data=HistoryResponseData(room_id=room_id, messages=messages, total=len(messages)),
    )


# ── 用户名与角色 ──────────────────────────────────────────────────────

@router.get(
    "/usernames/{username}/availability",
    summary="检查用户名是否可用",
    response_model=ApiResponse[UsernameStatusData],
)
@limiter.limit("5/second")
async def username_availability(
    request: Request, username: str, system: ChatSystem = Depends(get_chat_system),
):
    status = system.protocol.username_status(username)
    return ApiResponse.ok(
        data=UsernameStatusData(
            username=status.username, is_available=status.is_available, error=status.error,
        ),
    )


@router.get("/personas", summary="获取静态角色列表", response_model=ApiResponse[list[PersonaInfoData]])
@limiter.limit("10/second")
async def list_personas(request: Request, system: ChatSystem = Depends(get_chat_system)):
    return ApiResponse.ok(
        data=[
            PersonaInfoData(
                name=p.name,
                username=p.handle,
                bio=p.bio,
                chat_enabled=p.chat_settings.enabled,
                auto_invite=p.chat_settings.auto_invite,
            )
            for p in system.personas.all()
        ],
    )
