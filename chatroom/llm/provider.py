"""
chatroom.llm.provider
~~~~~~~~~~~~~~~~~~~~~

LLM 补全入口 —— 对调度器暴露唯一的 ``generate_completion(prompt, settings)``。

- ``DEFAULT_MODEL=none``：不发任何网络请求，走本地预置回复（调试用）
- 其他取值：调用 Google Gemini（``google-genai`` 异步客户端）

任何调用失败都以 ``CompletionError`` 抛出，由调用方决定兜底策略。
"""
from __future__ import annotations

import random

from google import genai
from google.genai import types
from pydantic import BaseModel, Field

from chatroom.core.config import Settings, settings as default_settings
from chatroom.core.errors import CompletionError
from chatroom.core.logging import get_logger
from chatroom.llm.canned import get_contextual_response
from chatroom.llm.client import create_gemini_client

logger = get_logger(__name__)


class CompletionSettings(BaseModel):
    """单次补全的可选参数，未设置的字段取全局配置。"""

    model: str | None = Field(default=None, description="覆盖默认模型")
    temperature: float | None = Field(default=None, description="采样温度")
    max_tokens: int | None = Field(default=None, description="最大输出 token 数")
    web_search: bool = Field(default=False, description="是否启用 Google Search 工具")


class ModelProvider:
    """LLM 补全提供者。

    Attributes:
        model_name: 当前使用的模型名称，``none`` 表示无模型模式。
    """

    def __init__(
        self,
        settings: Settings | None = None,
        client: genai.Client | None = None,
        rng: random.Random | None = None,
    ) -> None:
        """初始化提供者。

        Args:
            settings: 配置对象，默认使用全局配置。
            client: 可选的 ``genai.Client``（测试时注入 mock）。
            rng: 预置回复使用的随机数源。
        """
        self.settings = settings or default_settings
        self.model_name: str = self.settings.DEFAULT_MODEL
        self._rng = rng or random.Random()
        self._client: genai.Client | None = client
        logger.info("ModelProvider 已初始化 | model=%s", self.model_name)

    @property
    def is_disabled(self) -> bool:
        return self.model_name.lower() == "none"

    @property
    def client(self) -> genai.Client:
        # 懒创建，none 模式下永远不会触碰网络客户端
        if self._client is None:
            self._client = create_gemini_client(self.settings)
        return self._client

    async def generate_completion(
        self, prompt: str, settings: CompletionSettings | None = None,
    ) -> str:
        """生成一次补全。

        Args:
            prompt: 已组装好的完整 Prompt。
            settings: 本次调用的参数覆盖。

        Returns:
            模型输出文本（可能为空字符串，空字符串代表 AI 选择沉默）。

        Raises:
            CompletionError: 调用模型失败。
        """
        settings = settings or CompletionSettings()
        temperature = (
            settings.temperature if settings.temperature is not None
            else self.settings.LLM_TEMPERATURE
        )
        max_tokens = settings.max_tokens or self.settings.LLM_MAX_TOKENS

        if self.is_disabled:
            flavour = "default"
            if temperature > 0.8:
                flavour = "social"
            elif temperature < 0.4:
                flavour = "intellectual"
            return get_contextual_response(prompt, flavour, self._rng)

        model = settings.model or self.model_name
        tools = [types.Tool(google_search=types.GoogleSearch())] if settings.web_search else None
        try:
            response = await self.client.aio.models.generate_content(
                model=model,
                contents=prompt,
                config=types.GenerateContentConfig(
                    temperature=temperature,
                    max_output_tokens=max_tokens,
                    tools=tools,
                ),
            )
        except Exception as e:
            logger.error("LLM 调用异常 | model=%s | %s", model, e, exc_info=True)
            raise CompletionError(str(e)) from e
        return response.text or ""
