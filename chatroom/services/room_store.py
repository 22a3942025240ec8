"""
chatroom.services.room_store
~~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间领域模型与内存房间仓库。

房间 ID 按类型加前缀：

- ``chat_<name>``           普通聊天频道
- ``dm_<a>_<b>``            私聊，两个名字按字母序排列
- ``playground_*``          实验场，不受角色资格与自动邀请限制

房间状态只存在于内存中，进程重启即丢失。
"""
from __future__ import annotations

import time
from collections import deque
from collections.abc import Callable, Iterator

from pydantic import BaseModel

from chatroom.core.logging import get_logger
from chatroom.schemas.events import ChatMessage
from chatroom.schemas.rooms import RoomInfoData

logger = get_logger(__name__)

CHAT_PREFIX = "chat_"
DM_PREFIX = "dm_"
PLAYGROUND_PREFIX = "playground_"


def is_playground_room(room_id: str) -> bool:
    return room_id.startswith(PLAYGROUND_PREFIX)


def is_chat_room(room_id: str) -> bool:
    return room_id.startswith(CHAT_PREFIX) or room_id.startswith(f"{PLAYGROUND_PREFIX}chat_")


def is_dm_room(room_id: str) -> bool:
    return room_id.startswith(DM_PREFIX)


def room_kind(room_id: str) -> str:
    """房间类型：playground / dm / chat / other。"""
    if is_playground_room(room_id):
        return "playground"
    if is_dm_room(room_id):
        return "dm"
    if is_chat_room(room_id):
        return "chat"
    return "other"


def dm_room_id(name_a: str, name_b: str) -> str:
    """由两个参与者名字构造私聊房间 ID（按字母序，大小写不敏感）。"""
    first, second = sorted((name_a, name_b), key=str.lower)
    return f"{DM_PREFIX}{first}_{second}"


def dm_participants(room_id: str) -> list[str]:
    """解析私聊房间 ID 中的两个名字。

    名字本身可能含下划线，这里按第一个下划线切分。
    """
    if not is_dm_room(room_id):
        return []
    return [part for part in room_id[len(DM_PREFIX):].split("_", 1) if part]


class Participant(BaseModel):
    """房间参与者。人类的 id 即连接 ID，AI 的 id 由进程生成。"""

    id: str
    name: str
    is_ai: bool = False
    bio: str | None = None


class Room:
    """一个聊天房间。

    Attributes:
        room_id: 房间唯一标识。
        players: 参与者 ID → 参与者，保持插入顺序。
        messages: 有界历史消息（最旧的先被淘汰）。
        last_human_activity: 最近一次人类发言或加入的时间（Unix 秒）。
        topic: 通过 ``/topic`` 设置的频道话题。
        ai_chain_length: 当前 AI 对话链长度。
        last_ai_initiated_at: 最近一次 AI 主动发言时间。
        closing: 已进入关闭流程，不再接受订阅。
    """

    def __init__(
        self,
        room_id: str,
        max_messages: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.room_id = room_id
        self._clock = clock
        self.players: dict[str, Participant] = {}
        self.messages: deque[ChatMessage] = deque(maxlen=max_messages)
        self.last_human_activity: float = clock()
        self.topic: str | None = None
        self.ai_chain_length: int = 0
        self.last_ai_initiated_at: float = 0.0
        self.closing: bool = False

    @property
    def kind(self) -> str:
        return room_kind(self.room_id)

    @property
    def humans(self) -> list[Participant]:
        return [p for p in self.players.values() if not p.is_ai]

    @property
    def ais(self) -> list[Participant]:
        return [p for p in self.players.values() if p.is_ai]

    def find_by_name(self, name: str) -> Participant | None:
        """按名字查找参与者（大小写不敏感）。"""
        lowered = name.lower()
        for player in self.players.values():
            if player.name.lower() == lowered:
                return player
        return None

    def touch(self) -> None:
        """记录一次人类活动。"""
        self.last_human_activity = self._clock()

    def info(self) -> RoomInfoData:
        """返回房间摘要信息。"""
        return RoomInfoData(
            room_id=self.room_id,
            kind=self.kind,
            topic=self.topic,
            human_count=len(self.humans),
            ai_count=len(self.ais),
            message_count=len(self.messages),
            last_human_activity=self.last_human_activity,
        )


class RoomStore:
    """内存房间仓库，房间的唯一所有者。"""

    def __init__(self, max_messages: int, clock: Callable[[], float] = time.time) -> None:
        self.max_messages = max_messages
        self._clock = clock
        self._rooms: dict[str, Room] = {}

    def get(self, room_id: str) -> Room | None:
        return self._rooms.get(room_id)

    def get_or_create(self, room_id: str) -> tuple[Room, bool]:
        """获取房间，不存在则创建。

        Returns:
            ``(room, created)``，``created`` 仅在本次调用新建房间时为 True，
            调用方据此执行一次性的房间初始化。
        """
        room = self._rooms.get(room_id)
        if room is not None:
            return room, False
        room = Room(room_id, self.max_messages, clock=self._clock)
        self._rooms[room_id] = room
        logger.info("房间已创建 | room=%s | kind=%s", room_id, room.kind)
        return room, True

    def delete(self, room_id: str) -> Room | None:
        room = self._rooms.pop(room_id, None)
        if room is not None:
            logger.info("房间已删除 | room=%s | 剩余房间: %d", room_id, len(self._rooms))
        return room

    def rooms_of(self, participant_id: str) -> list[Room]:
        """该参与者所在的全部房间。"""
        return [room for room in self._rooms.values() if participant_id in room.players]

    def list_rooms(self) -> list[RoomInfoData]:
        return [room.info() for room in self._rooms.values()]

    def __contains__(self, room_id: object) -> bool:
        return room_id in self._rooms

    def __iter__(self) -> Iterator[Room]:
        # 拷贝一份，允许遍历期间删除房间
        return iter(list(self._rooms.values()))

    def __len__(self) -> int:
        return len(self._rooms)
