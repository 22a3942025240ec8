"""
chatroom.schemas.rooms
~~~~~~~~~~~~~~~~~~~~~~

房间相关的 REST 响应模型。
"""
from __future__ import annotations

from pydantic import BaseModel, Field

from chatroom.schemas.events import ChatMessage


class RoomInfoData(BaseModel):
    """房间摘要信息。"""

    room_id: str = Field(..., description="房间唯一标识")
    kind: str = Field(..., description="房间类型：chat / dm / playground / other")
    topic: str | None = Field(default=None, description="频道话题")
    human_count: int = Field(..., description="人类参与者数")
    ai_count: int = Field(..., description="AI 参与者数")
    message_count: int = Field(..., description="保留的历史消息数")
    last_human_activity: float = Field(..., description="最近一次人类活动时间（Unix 秒）")


class HistoryResponseData(BaseModel):
    """对话历史响应数据。"""

    room_id: str = Field(..., description="房间 ID")
    messages: list[ChatMessage] = Field(..., description="消息列表（旧 → 新）")
    total: int = Field(..., description="本次返回条数")


class UsernameStatusData(BaseModel):
    """用户名可用性检查结果。"""

    username: str
    is_available: bool
    error: str | None = None


class PersonaInfoData(BaseModel):
    """静态角色摘要。"""

    name: str
    username: str
    bio: str | None = None
    chat_enabled: bool
    auto_invite: bool
