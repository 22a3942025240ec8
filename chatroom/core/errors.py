"""
chatroom.core.errors
~~~~~~~~~~~~~~~~~~~~

业务异常体系。

核心服务只抛出 ``ChatroomError`` 的子类，由协议层（``ChannelProtocol``）
统一转换为发给请求方连接的 ``error`` 事件，不会影响房间内其他人。
"""
from __future__ import annotations


class ChatroomError(Exception):
    """所有可向客户端报告的业务错误的基类。

    Attributes:
        message: 简短的错误标题（客户端展示用）。
        details: 更详细的说明。
    """

    default_message: str = "Request failed"

    def __init__(self, details: str, message: str | None = None) -> None:
        super().__init__(details)
        self.message: str = message or self.default_message
        self.details: str = details

    def to_payload(self) -> dict[str, str]:
        """转换为 ``error`` 事件的负载。"""
        return {"message": self.message, "details": self.details}


class NameConflictError(ChatroomError):
    """用户名已被其他连接占用（房间内或全局）。"""

    default_message = "Username already taken"


class RoomCapacityError(ChatroomError):
    """房间 AI 数量或总人数已达上限。"""

    default_message = "Room at capacity"


class PersonaNotFoundError(ChatroomError):
    """找不到指定名称的角色。"""

    default_message = "Persona not found"


class PersonaNotEligibleError(ChatroomError):
    """角色未对当前房间类型开放。"""

    default_message = "Persona not enabled for this room"


class PersonaAlreadyPresentError(ChatroomError):
    """同名角色已在房间内。"""

    default_message = "Persona already in room"


class NotSubscribedError(ChatroomError):
    """连接向未加入的频道发送消息。"""

    default_message = "Not subscribed to channel"


class CompletionError(Exception):
    """LLM 调用失败（网络、超时、服务端错误等）。

    属于可恢复错误：调度器会按触发路径决定兜底回复还是静默放弃，
    不会上报给任何客户端。
    """
