"""
chatroom.schemas
~~~~~~~~~~~~~~~~
Pydantic schemas：REST 应答体与 WebSocket 事件负载。
"""
from chatroom.schemas.api_response import ApiResponse
from chatroom.schemas.events import (
    ChatMessage,
    ClientEvents,
    PublicPlayer,
    ServerEvents,
)
from chatroom.schemas.rooms import HistoryResponseData, RoomInfoData, UsernameStatusData

# Call model_rebuild to resolve forward references in generic Pydantic models.
ApiResponse.model_rebuild()

__all__ = [
    "ApiResponse",
    "ChatMessage",
    "ClientEvents",
    "HistoryResponseData",
    "PublicPlayer",
    "RoomInfoData",
    "ServerEvents",
    "UsernameStatusData",
]
