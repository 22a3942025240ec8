"""
chatroom.services.broadcaster
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

WebSocket 连接中心 —— 维护连接与房间分组，提供点对点和房间广播能力。

每个 WebSocket 连接分配一个 uuid 作为连接 ID（同时也是人类参与者 ID）。
帧格式统一为 JSON：``{"event": <名称>, "data": {...}}``。
"""
from __future__ import annotations

import asyncio
import json
import uuid
from typing import Any

from fastapi import WebSocket

from chatroom.core.logging import get_logger
from chatroom.schemas.events import WireModel

logger = get_logger(__name__)


def encode_frame(event: str, data: Any = None) -> str:
    """把事件编码为 JSON 文本帧。"""
    if isinstance(data, WireModel):
        data = data.to_wire()
    elif isinstance(data, list):
        data = [item.to_wire() if isinstance(item, WireModel) else item for item in data]
    return json.dumps({"event": event, "data": data}, ensure_ascii=False)


class ConnectionHub:
    """连接与房间分组管理器。

    Attributes:
        connections: 连接 ID → WebSocket。
        groups: 房间 ID → 该房间分组内的连接 ID 集合。
    """

    def __init__(self) -> None:
        self.connections: dict[str, WebSocket] = {}
        self.groups: dict[str, set[str]] = {}

    async def connect(self, websocket: WebSocket) -> str:
        """接受新连接，返回分配的连接 ID。"""
        await websocket.accept()
        connection_id = uuid.uuid4().hex
        self.connections[connection_id] = websocket
        logger.info("连接建立 | 当前在线: %d", len(self.connections))
        return connection_id

    def disconnect(self, connection_id: str) -> list[str]:
        """移除连接及其所有分组，返回它曾所在的房间。"""
        self.connections.pop(connection_id, None)
        left = self.groups_of(connection_id)
        for room_id in left:
            self.leave_group(connection_id, room_id)
        return left

    # ── 分组 ──

    def join_group(self, connection_id: str, room_id: str) -> None:
        self.groups.setdefault(room_id, set()).add(connection_id)

    def leave_group(self, connection_id: str, room_id: str) -> None:
        members = self.groups.get(room_id)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self.groups[room_id]

    def in_group(self, connection_id: str, room_id: str) -> bool:
        return connection_id in self.groups.get(room_id, ())

    def groups_of(self, connection_id: str) -> list[str]:
        return [room_id for room_id, members in self.groups.items() if connection_id in members]

    def members(self, room_id: str) -> set[str]:
        return set(self.groups.get(room_id, ()))

    # ── 发送 ──

    async def emit(self, connection_id: str, event: str, data: Any = None) -> bool:
        """向单个连接发送事件；连接不存在或发送失败时返回 False。"""
        websocket = self.connections.get(connection_id)
        if websocket is None:
            return False
        try:
            await websocket.send_text(encode_frame(event, data))
        except Exception as e:
            logger.warning("发送失败，移除断开的连接 | event=%s | %s", event, e)
            self.disconnect(connection_id)
            return False
        return True

    async def emit_to_room(
        self, room_id: str, event: str, data: Any = None, exclude: str | None = None,
    ) -> None:
        """向房间分组内所有连接广播事件，可排除一个连接。"""
        targets = [
            cid for cid in self.groups.get(room_id, ())
            if cid != exclude and cid in self.connections
        ]
        if not targets:
            return
        frame = encode_frame(event, data)
        results = await asyncio.gather(
            *(self.connections[cid].send_text(frame) for cid in targets),
            return_exceptions=True,
        )
        for cid, result in zip(targets, results):
            if isinstance(result, Exception):
                logger.warning("广播失败，移除断开的连接 | room=%s | event=%s", room_id, event)
                self.disconnect(cid)

    async def close_connection(self, connection_id: str, reason: str = "") -> None:
        """强制关闭连接（房间关闭时使用）。"""
        websocket = self.connections.pop(connection_id, None)
        for room_id in self.groups_of(connection_id):
            self.leave_group(connection_id, room_id)
        if websocket is None:
            return
        try:
            await websocket.close(code=1000, reason=reason)
        except Exception as e:
            logger.debug("关闭连接时出错（连接可能已断开）: %s", e)

    @property
    def online_count(self) -> int:
        return len(self.connections)
