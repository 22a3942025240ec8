"""
chatroom.services.chat_service
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

业务服务层 —— 串联画像解析、Prompt 构建和 LLM 提供者。

调度器只通过本服务生成 AI 发言，不直接接触 Prompt 或模型细节。
"""
from __future__ import annotations

from chatroom.core.logging import get_logger
from chatroom.llm.provider import CompletionSettings, ModelProvider
from chatroom.prompts.chat import build_chat_prompt
from chatroom.schemas.events import ChatMessage
from chatroom.services.persona_resolver import PersonaResolver
from chatroom.services.room_store import Participant

logger = get_logger(__name__)


class ChatService:
    """AI 发言生成服务。

    Attributes:
        resolver: 画像解析器（按参与者 ID 缓存）。
        provider: LLM 补全提供者。
    """

    def __init__(self, resolver: PersonaResolver, provider: ModelProvider) -> None:
        self.resolver = resolver
        self.provider = provider

    async def generate_response_with_context(
        self,
        responder: Participant,
        history: list[ChatMessage],
        custom_template: str | None = None,
        settings: CompletionSettings | None = None,
    ) -> str:
        """以 ``responder`` 的身份，基于上下文生成一条发言（未做 trim）。

        Raises:
            CompletionError: LLM 调用失败。
        """
        persona = self.resolver.resolve(responder.name, responder.id)
        prompt = build_chat_prompt(persona, history, custom_template)
        completion = settings or CompletionSettings()
        if persona.chat_settings.web_search and not completion.web_search:
            completion = completion.model_copy(update={"web_search": True})
        logger.debug("生成 AI 发言 | name=%s | 上下文: %d 条", responder.name, len(history))
        return await self.provider.generate_completion(prompt, completion)

    async def generate_custom_response(
        self, prompt: str, settings: CompletionSettings | None = None,
    ) -> str:
        """直接使用调用方组装好的 Prompt。"""
        return await self.provider.generate_completion(prompt, settings)
