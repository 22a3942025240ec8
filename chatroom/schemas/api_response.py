"""
chatroom.schemas.api_response
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

REST 统一应答体 ``{code, data, msg}``。

成功时由路由直接返回模型；失败时通过 :meth:`ApiResponse.error_response`
包成带 HTTP 状态码的 ``JSONResponse``，保证 404 与 500 的结构一致。
"""
from __future__ import annotations

from typing import Any, Generic, TypeVar

from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """统一 JSON 应答体。

    .. code-block:: json

        {"code": 404, "data": null, "msg": "Room chat_x not found"}
    """

    code: int = Field(default=200, description="业务状态码，与 HTTP 状态码一致")
    data: T | None = Field(default=None, description="业务数据")
    msg: str = Field(default="success", description="状态消息")

    @classmethod
    def ok(cls, data: T, msg: str = "success") -> ApiResponse[T]:
        return cls(code=200, data=data, msg=msg)

    @classmethod
    def fail(cls, msg: str = "error", code: int = 500, data: Any = None) -> ApiResponse[Any]:
        return cls(code=code, data=data, msg=msg)

    @classmethod
    def error_response(cls, msg: str, status_code: int = 500) -> JSONResponse:
        """构造失败应答，HTTP 状态码与 ``code`` 字段保持一致。"""
        return JSONResponse(
            status_code=status_code,
            content=cls.fail(msg=msg, code=status_code).model_dump(),
        )

    @classmethod
    def room_not_found(cls, room_id: str) -> JSONResponse:
        return cls.error_response(f"Room {room_id} not found", status_code=404)
