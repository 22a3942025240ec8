"""
chatroom.schemas.events
~~~~~~~~~~~~~~~~~~~~~~~

WebSocket 事件名称与负载模型。

所有帧均为 JSON：``{"event": <名称>, "data": {...}}``。
负载字段在线上使用 camelCase（``senderId``、``roomId``），
Python 侧使用 snake_case，通过 alias 自动转换。
"""
from __future__ import annotations

import itertools
import time
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

MessageType = Literal["normal", "system", "error"]

SYSTEM_SENDER: str = "System"
SYSTEM_SENDER_ID: str = "system"

# 进程内单调递增的消息 ID
_message_ids = itertools.count(1)


def now_ms() -> int:
    """当前时间戳（毫秒），客户端使用毫秒时间。"""
    return int(time.time() * 1000)


class ClientEvents:
    """客户端 → 服务端事件名。"""

    PING = "ping"
    JOIN_ROOM = "joinRoom"
    SUBSCRIBE_TO_CHANNEL = "subscribe_to_channel"
    UNSUBSCRIBE_FROM_CHANNEL = "unsubscribe_from_channel"
    SEND_MESSAGE = "sendMessage"
    CHECK_USERNAME_AVAILABILITY = "checkUsernameAvailability"


class ServerEvents:
    """服务端 → 客户端事件名。"""

    PONG = "pong"
    ERROR = "error"
    JOINED_ROOM = "joinedRoom"
    PLAYER_JOINED = "playerJoined"
    PLAYER_LEFT = "playerLeft"
    PLAYER_LIST_UPDATE = "playerListUpdate"
    ROOM_CLOSED = "roomClosed"
    NEW_MESSAGE = "newMessage"
    USERNAME_AVAILABILITY_STATUS = "usernameAvailabilityStatus"
    CHANNEL_JOIN_COMMAND = "CHANNEL_JOIN_COMMAND"


class WireModel(BaseModel):
    """线上负载基类：camelCase 别名，允许按字段名构造。"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """导出为发给客户端的字典（camelCase，省略 None）。"""
        return self.model_dump(by_alias=True, exclude_none=True)


# ── 消息 ──────────────────────────────────────────────────────────────

class ChatMessage(WireModel):
    """一条聊天消息。写入历史后不可变。"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: int = Field(default_factory=lambda: next(_message_ids), description="消息 ID")
    sender: str = Field(..., description="发送者显示名")
    sender_id: str = Field(..., description="发送者参与者 ID")
    text: str = Field(..., description="消息正文")
    type: MessageType = Field(default="normal", description="消息类型")
    timestamp: int = Field(default_factory=now_ms, description="毫秒时间戳")
    room_id: str | None = Field(default=None, description="所属房间")

    @classmethod
    def system(
        cls, text: str, room_id: str | None = None, is_error: bool = False,
    ) -> ChatMessage:
        """构造系统（或错误）提示消息。"""
        return cls(
            sender="Error" if is_error else SYSTEM_SENDER,
            sender_id=SYSTEM_SENDER_ID,
            text=text,
            type="error" if is_error else "system",
            room_id=room_id,
        )


# ── 参与者 ────────────────────────────────────────────────────────────

class PersonaSummary(WireModel):
    """Playground 房间中展示给客户端的 AI 角色详情。"""

    profile: str = ""
    personality: dict[str, Any] | None = None
    chat_settings: dict[str, Any] | None = None
    typing_speed_ms_per_char: float | None = None
    response_rate: float | None = None
    activity_level: float | None = None


class PublicPlayer(WireModel):
    """客户端可见的参与者视图。普通房间不暴露 isAI。"""

    id: str
    name: str
    bio: str | None = None
    is_ai: bool | None = Field(default=None, alias="isAI")
    persona: PersonaSummary | None = None
    room_id: str | None = None


# ── 服务端事件负载 ────────────────────────────────────────────────────

class JoinedRoomPayload(WireModel):
    user_id: str
    username: str
    players: list[PublicPlayer]
    room_id: str
    history: list[ChatMessage]
    is_reconnection: bool = False
    is_debounced: bool = False


class PlayerListUpdatePayload(WireModel):
    players: list[PublicPlayer]
    room_id: str


class RoomClosedPayload(WireModel):
    reason: str
    room_id: str


class ErrorPayload(WireModel):
    message: str
    details: str


class UsernameStatusPayload(WireModel):
    username: str
    is_available: bool
    error: str | None = None


class ChannelJoinCommandPayload(WireModel):
    channel_id: str
    channel_name: str


# ── 客户端事件负载 ────────────────────────────────────────────────────

class SubscribeRequest(WireModel):
    room_id: str = ""
    username: str | None = None


class UnsubscribeRequest(WireModel):
    room_id: str = ""


class JoinRoomRequest(WireModel):
    room_id: str | None = None
    username: str | None = None


class SendMessageRequest(WireModel):
    text: str = Field(..., max_length=2000)
    sender_id: str | None = None
    chat_id: str | None = None
    room_id: str | None = None


class CheckUsernameRequest(WireModel):
    username: str = ""
