"""
chatroom.api.deps
~~~~~~~~~~~~~~~~~

FastAPI 依赖：从 ``app.state`` 取出组装好的服务。
"""
from fastapi import Request, WebSocket

from chatroom.services.chat_system import ChatSystem


def get_chat_system(request: Request) -> ChatSystem:
    return request.app.state.chat_system


def get_ws_chat_system(websocket: WebSocket) -> ChatSystem:
    return websocket.app.state.chat_system
