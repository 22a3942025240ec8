"""
tests.test_prompts
~~~~~~~~~~~~~~~~~~

聊天 Prompt 组装与房间话题提示单元测试。
"""
from __future__ import annotations

from chatroom.core.persona import PersonaTemplates
from chatroom.prompts.chat import (
    NO_HISTORY_TEXT,
    build_chat_prompt,
    build_topic_note,
    format_conversation_history,
)
from chatroom.schemas.events import ChatMessage
from chatroom.services.room_store import Room
from tests.factories import make_persona


def _room(room_id: str, topic: str | None = None) -> Room:
    room = Room(room_id, max_messages=10)
    room.topic = topic
    return room


# ── 话题提示 ──────────────────────────────────────────────────────────

class TestTopicNote:
    """测试按房间类型生成的前置系统提示。"""

    def test_dm_names_the_other_participant(self) -> None:
        note = build_topic_note(_room("dm_alex_bob"), "alex")

        assert note.type == "system"
        assert "private direct message conversation with bob" in note.text

    def test_explicit_topic_wins_over_room_name(self) -> None:
        note = build_topic_note(_room("chat_general", topic="space travel"), "alex")

        assert note.text.startswith("Channel topic: space travel.")
        assert "general" not in note.text

    def test_topic_inferred_from_chat_prefix(self) -> None:
        note = build_topic_note(_room("chat_cooking"), "alex")
        assert note.text.startswith("You are in the #cooking channel.")

    def test_playground_chat_prefix(self) -> None:
        note = build_topic_note(_room("playground_chat_books"), "alex")
        assert "#books" in note.text

    def test_plain_playground_has_no_note(self) -> None:
        assert build_topic_note(_room("playground_lab"), "alex") is None

    def test_other_room_uses_raw_id(self) -> None:
        note = build_topic_note(_room("lobby"), "alex")
        assert note.text.startswith("You are in the #lobby channel.")


# ── Prompt 组装 ───────────────────────────────────────────────────────

class TestBuildChatPrompt:
    """测试模板选择与字段填充。"""

    def test_default_template(self) -> None:
        persona = make_persona("Alex", traits=["curious"])
        history = [ChatMessage(sender="bob", sender_id="c1", text="anyone here?")]

        prompt = build_chat_prompt(persona, history)

        assert "### Your Persona: Alex" in prompt
        assert persona.profile in prompt
        assert "Traits: curious" in prompt
        assert "bob: anyone here?" in prompt
        assert prompt.endswith("Alex: ")

    def test_empty_history(self) -> None:
        assert format_conversation_history([]) == NO_HISTORY_TEXT
        prompt = build_chat_prompt(make_persona("Alex"), [])
        assert NO_HISTORY_TEXT in prompt

    def test_persona_template_used(self) -> None:
        persona = make_persona("Alex").model_copy(
            update={"templates": PersonaTemplates(chat="Be {name}. {conversation_history}")},
        )
        prompt = build_chat_prompt(persona, [])
        assert prompt == f"Be Alex. {NO_HISTORY_TEXT}"

    def test_custom_template_has_priority(self) -> None:
        persona = make_persona("Alex").model_copy(
            update={"templates": PersonaTemplates(chat="persona template")},
        )
        assert build_chat_prompt(persona, [], "custom {name}") == "custom Alex"

    def test_unknown_field_left_untouched(self) -> None:
        prompt = build_chat_prompt(make_persona("Alex"), [], "{name} likes {mood}")
        assert prompt == "Alex likes {mood}"

    def test_broken_template_falls_back_to_default(self) -> None:
        prompt = build_chat_prompt(make_persona("Alex"), [], "broken {name")
        assert "### Your Persona: Alex" in prompt
