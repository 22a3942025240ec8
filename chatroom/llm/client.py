"""
chatroom.llm.client
~~~~~~~~~~~~~~~~~~~

Gemini API 客户端工厂 —— 全局共享的客户端创建入口。
"""
from __future__ import annotations

from google import genai

from chatroom.core.config import Settings, settings as default_settings


def create_gemini_client(settings: Settings | None = None) -> genai.Client:
    """创建 Gemini API 客户端实例。

    Returns:
        已认证的 ``genai.Client``。
    """
    settings = settings or default_settings
    return genai.Client(api_key=settings.GEMINI_API_KEY)
