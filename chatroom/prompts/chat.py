"""
chatroom.prompts.chat
~~~~~~~~~~~~~~~~~~~~~

AI 参与者聊天 Prompt 的构建工具。

模板优先级：调用方传入的自定义模板 > 角色包 ``templates.chat`` > 默认模板。
模板使用 ``str.format`` 语法，可用字段为 ``name``、``profile``、
``conversation_history``；格式错误的模板会回退到默认模板。
"""
from __future__ import annotations

from datetime import datetime

from chatroom.core.logging import get_logger
from chatroom.core.persona import PersonaConfig
from chatroom.schemas.events import ChatMessage
from chatroom.services.room_store import (
    CHAT_PREFIX,
    PLAYGROUND_PREFIX,
    Room,
    dm_participants,
    is_dm_room,
    is_playground_room,
)

logger = get_logger(__name__)

# ---------------------------------------------------------------------------
# 默认聊天模板
# ---------------------------------------------------------------------------
DEFAULT_CHAT_TEMPLATE: str = """\
You are chatting in an online chat room as your persona. Stay in character.
Keep replies short and casual, like a real person typing in a chat.
If you have nothing worth adding right now, reply with an empty message and you will stay silent.

### Your Persona: {name}
{profile}
{persona_details}

### Conversation History
{conversation_history}

{name}: \
"""

NO_HISTORY_TEXT: str = "No conversation history yet."


class _SafeFormatDict(dict):
    """缺失字段原样保留为 ``{key}``，避免自定义模板因多写字段而失败。"""

    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


def _topic_text(topic: str, label: str) -> str:
    return (
        f"{label}. Keep the conversation related to {topic}. "
        f"If the conversation drifts, gently redirect it back to discussing {topic}. "
        f"Share relevant information, opinions or experiences specifically about {topic}."
    )


def build_topic_note(room: Room, responder_name: str) -> ChatMessage | None:
    """为即将发言的 AI 生成一条前置的系统提示，说明房间上下文。

    优先级：私聊 > 显式话题 > 由 ``chat_`` 前缀推断 > 非 playground 房间直接用房间 ID。
    """
    room_id = room.room_id
    if is_dm_room(room_id):
        other = next(
            (p for p in dm_participants(room_id) if p.lower() != responder_name.lower()),
            "a user",
        )
        text = (
            f"This is a private direct message conversation with {other}. "
            "Respond naturally and personally. Be engaging and conversational. "
            "You can be more casual and direct since this is a one-on-one chat."
        )
    elif room.topic:
        text = _topic_text(room.topic, f"Channel topic: {room.topic}")
    elif room_id.startswith(CHAT_PREFIX) or room_id.startswith(f"{PLAYGROUND_PREFIX}{CHAT_PREFIX}"):
        inferred = room_id.split(CHAT_PREFIX, 1)[1]
        text = _topic_text(inferred, f"You are in the #{inferred} channel")
    elif not is_playground_room(room_id):
        text = _topic_text(room_id, f"You are in the #{room_id} channel")
    else:
        return None
    return ChatMessage.system(text, room_id=room_id)


def format_conversation_history(messages: list[ChatMessage]) -> str:
    """把消息列表格式化为 ``[HH:MM:SS] sender: text`` 的多行文本。"""
    if not messages:
        return NO_HISTORY_TEXT
    lines: list[str] = []
    for msg in messages:
        stamp = datetime.fromtimestamp(msg.timestamp / 1000).strftime("%H:%M:%S")
        lines.append(f"[{stamp}] {msg.sender}: {msg.text}")
    return "\n".join(lines)


def _persona_details(persona: PersonaConfig) -> str:
    p = persona.personality
    rows: list[str] = []
    if p.traits:
        rows.append(f"Traits: {', '.join(p.traits)}")
    if p.communication_style:
        rows.append(f"Communication style: {p.communication_style}")
    if p.interests:
        rows.append(f"Interests: {', '.join(p.interests)}")
    if p.typing_patterns:
        rows.append(f"Typing patterns: {p.typing_patterns}")
    if p.common_phrases:
        rows.append(f"Phrases you often use: {'; '.join(p.common_phrases)}")
    if p.emoji_usage:
        rows.append(f"Emoji usage: {p.emoji_usage}")
    return "\n".join(rows)


def build_chat_prompt(
    persona: PersonaConfig,
    history: list[ChatMessage],
    custom_template: str | None = None,
) -> str:
    """组装发送给 LLM 的聊天 Prompt。

    Args:
        persona: 发言 AI 的角色配置（静态或动态混合）。
        history: 上下文消息（旧 → 新），可能以系统提示开头。
        custom_template: 可选的自定义模板，优先级最高。

    Returns:
        完整 Prompt 字符串。
    """
    fields = _SafeFormatDict(
        name=persona.name,
        profile=persona.profile,
        persona_details=_persona_details(persona),
        conversation_history=format_conversation_history(history),
    )
    template = custom_template or persona.templates.chat
    if template:
        try:
            return template.format_map(fields)
        except (ValueError, IndexError, AttributeError) as e:
            logger.warning("自定义模板格式错误，回退默认模板 | persona=%s | %s", persona.name, e)
    return DEFAULT_CHAT_TEMPLATE.format_map(fields)
