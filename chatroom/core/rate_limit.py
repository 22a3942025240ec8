"""
chatroom.core.rate_limit
~~~~~~~~~~~~~~~~~~~~~~~~

REST 接口限流配置（slowapi），按客户端 IP 计数。
"""
from __future__ import annotations

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
)
