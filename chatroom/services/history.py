"""
chatroom.services.history
~~~~~~~~~~~~~~~~~~~~~~~~~

有界消息历史。

同一个窗口同时用于客户端历史回放和 LLM 上下文，不另设无界归档。
顺序严格为追加顺序，与消息时间戳无关。
"""
from __future__ import annotations

from chatroom.schemas.events import ChatMessage
from chatroom.services.room_store import RoomStore


class MessageLedger:
    """按房间维护的只追加消息日志，超过上限时从最旧处裁剪。"""

    def __init__(self, store: RoomStore) -> None:
        self.store = store

    def append(self, room_id: str, message: ChatMessage) -> bool:
        """追加一条消息；房间不存在时返回 False。"""
        room = self.store.get(room_id)
        if room is None:
            return False
        # deque(maxlen) 在超出容量时自动丢弃最旧的消息
        room.messages.append(message)
        return True

    def recent(self, room_id: str, limit: int | None = None) -> list[ChatMessage]:
        """返回最近 ``limit`` 条消息（旧 → 新）。"""
        room = self.store.get(room_id)
        if room is None:
            return []
        messages = list(room.messages)
        if limit is None or limit >= len(messages):
            return messages
        return messages[-limit:] if limit > 0 else []
