"""
chatroom.api.ws
~~~~~~~~~~~~~~~

WebSocket 实时交互接口 —— 多频道聊天。

一个 WebSocket 连接 = 一个连接 ID（同时也是人类参与者 ID），
可同时订阅多个频道。帧格式为 JSON：``{"event": <名称>, "data": {...}}``。

客户端事件:
  - ``ping``                       → ``pong``
  - ``joinRoom``                   旧版单房间加入（默认频道）
  - ``subscribe_to_channel``       订阅频道
  - ``unsubscribe_from_channel``   退订频道
  - ``sendMessage``                发言（以 ``/`` 开头为命令）
  - ``checkUsernameAvailability``  用户名可用性检查
"""
from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from chatroom.api.deps import get_ws_chat_system
from chatroom.core.errors import ChatroomError
from chatroom.core.logging import connection_id_ctx_var, get_logger
from chatroom.schemas.events import (
    CheckUsernameRequest,
    ClientEvents,
    JoinRoomRequest,
    SendMessageRequest,
    ServerEvents,
    SubscribeRequest,
    UnsubscribeRequest,
    now_ms,
)
from chatroom.services.chat_system import ChatSystem

logger = get_logger(__name__)

router: APIRouter = APIRouter()


async def dispatch_event(
    system: ChatSystem, connection_id: str, event: str, data: dict[str, Any],
) -> None:
    """把一个客户端事件分发给协议层。"""
    protocol = system.protocol
    if event == ClientEvents.PING:
        await system.hub.emit(connection_id, ServerEvents.PONG, {"timestamp": now_ms()})
    elif event == ClientEvents.JOIN_ROOM:
        req = JoinRoomRequest.model_validate(data)
        await protocol.join_room(connection_id, req.room_id, req.username)
    elif event == ClientEvents.SUBSCRIBE_TO_CHANNEL:
        req = SubscribeRequest.model_validate(data)
        await protocol.subscribe(connection_id, req.room_id, req.username)
    elif event == ClientEvents.UNSUBSCRIBE_FROM_CHANNEL:
        req = UnsubscribeRequest.model_validate(data)
        await protocol.unsubscribe(connection_id, req.room_id)
    elif event == ClientEvents.SEND_MESSAGE:
        req = SendMessageRequest.model_validate(data)
        await protocol.send_message(connection_id, req)
    elif event == ClientEvents.CHECK_USERNAME_AVAILABILITY:
        req = CheckUsernameRequest.model_validate(data)
        await protocol.check_username(connection_id, req.username)
    else:
        raise ChatroomError(f"Unsupported event: {event}", message="Unknown event")


async def handle_frame(system: ChatSystem, connection_id: str, raw: str) -> None:
    """解析一帧并处理。格式错误或处理异常只回报给当前连接，不断开连接。"""
    try:
        frame = json.loads(raw)
    except json.JSONDecodeError:
        frame = None
    if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
        await system.protocol.send_error(
            connection_id,
            ChatroomError('Frames must be JSON objects like {"event": ..., "data": {...}}', message="Invalid frame"),
        )
        return

    event: str = frame["event"]
    data = frame.get("data") or {}
    if not isinstance(data, dict):
        data = {}
    try:
        await dispatch_event(system, connection_id, event, data)
    except ValidationError as e:
        await system.protocol.send_error(
            connection_id, ChatroomError(str(e), message=f"Invalid payload for {event}"),
        )
    except ChatroomError as e:
        await system.protocol.send_error(connection_id, e)
    except Exception as e:
        logger.error("事件处理异常 | event=%s | %s", event, e, exc_info=True)
        await system.protocol.send_error(
            connection_id, ChatroomError("An unexpected error occurred", message="Internal error"),
        )


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """多频道聊天 WebSocket 端点。"""
    system = get_ws_chat_system(websocket)
    connection_id = await system.hub.connect(websocket)
    token = connection_id_ctx_var.set(f"ws-{connection_id[:8]}")
    logger.info("客户端已连接 | connection=%s", connection_id)
    try:
        while True:
            raw = await websocket.receive_text()
            await handle_frame(system, connection_id, raw)
    except WebSocketDisconnect:
        logger.info("客户端断开 | connection=%s", connection_id)
    except Exception as e:
        logger.error("WebSocket 异常: %s", e, exc_info=True)
    finally:
        await system.protocol.handle_disconnect(connection_id)
        connection_id_ctx_var.reset(token)
