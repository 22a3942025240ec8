"""
tests.test_scheduler
~~~~~~~~~~~~~~~~~~~~

AIResponseScheduler 单元测试。

验证：
- 人类发言后由一个 AI 回复，失败时使用兜底回复，空回复视为沉默
- 对话链长度上限与接话条件
- 环境闲聊只在有人类（或 playground）且有 AI 的房间触发
- 房间关闭时取消待执行任务
"""
from __future__ import annotations

import asyncio
import random
from unittest.mock import AsyncMock

import pytest

from chatroom.core.errors import CompletionError
from chatroom.services.chat_system import ChatSystem
from chatroom.services.scheduler import FALLBACK_REPLY
from tests.factories import FakeClock, make_personas, make_settings


def build_system(provider, **overrides) -> ChatSystem:
    return ChatSystem(
        make_personas(),
        provider=provider,
        settings=make_settings(**overrides),
        rng=random.Random(11),
        clock=FakeClock(),
    )


def add_room(system: ChatSystem, room_id: str, ai_names: list[str], human: str | None = "bob"):
    room, _ = system.store.get_or_create(room_id)
    for name in ai_names:
        system.registry.add_ai(room_id, name)
    if human:
        system.registry.add_human("c1", room_id, human)
    return room


def ai_messages(system: ChatSystem, room_id: str) -> list[str]:
    return [m.text for m in system.ledger.recent(room_id) if m.sender_id.startswith("ai_")]


# ── HUMAN ─────────────────────────────────────────────────────────────

class TestHumanTrigger:
    """测试人类发言触发的 AI 回复。"""

    @pytest.mark.asyncio
    async def test_one_ai_replies(self, provider, drain) -> None:
        system = build_system(provider)
        room = add_room(system, "chat_a", ["alex", "maya"])

        task = system.scheduler.on_human_message("chat_a")
        await drain(system.scheduler)

        assert task is not None
        assert ai_messages(system, "chat_a") == ["hello from ai"]
        assert room.ai_chain_length == 1

    @pytest.mark.asyncio
    async def test_reply_is_trimmed(self, provider, drain) -> None:
        provider.generate_completion = AsyncMock(return_value="  spaced out \n")
        system = build_system(provider)
        add_room(system, "chat_a", ["alex"])

        system.scheduler.on_human_message("chat_a")
        await drain(system.scheduler)

        assert ai_messages(system, "chat_a") == ["spaced out"]

    @pytest.mark.asyncio
    async def test_no_ai_no_task(self, provider) -> None:
        system = build_system(provider)
        add_room(system, "chat_a", [])
        assert system.scheduler.on_human_message("chat_a") is None

    @pytest.mark.asyncio
    async def test_completion_error_uses_fallback(self, provider, drain) -> None:
        provider.generate_completion = AsyncMock(side_effect=CompletionError("down"))
        system = build_system(provider)
        add_room(system, "chat_a", ["alex"])

        system.scheduler.on_human_message("chat_a")
        await drain(system.scheduler)

        assert ai_messages(system, "chat_a") == [FALLBACK_REPLY]

    @pytest.mark.asyncio
    async def test_empty_reply_is_silence(self, provider, drain) -> None:
        provider.generate_completion = AsyncMock(return_value="   ")
        system = build_system(provider, AI_CHAT_PROBABILITY=1.0)
        room = add_room(system, "chat_a", ["alex", "maya"])

        system.scheduler.on_human_message("chat_a")
        await drain(system.scheduler)

        assert ai_messages(system, "chat_a") == []
        assert room.ai_chain_length == 0

    @pytest.mark.asyncio
    async def test_responder_removed_before_reply(self, provider, drain) -> None:
        """延迟期间 AI 被移出房间，回复静默放弃。"""
        system = build_system(provider, AI_TYPING_DELAY_MIN=0.05, AI_TYPING_DELAY_MAX=0.05)
        room = add_room(system, "chat_a", ["alex"])
        ai_id = room.ais[0].id

        system.scheduler.on_human_message("chat_a")
        system.registry.remove(ai_id, "chat_a")
        await drain(system.scheduler)

        assert ai_messages(system, "chat_a") == []
        provider.generate_completion.assert_not_called()

    @pytest.mark.asyncio
    async def test_responder_kicked_during_generation(self, provider, drain) -> None:
        """生成期间 AI 被踢出，回复不会以它的身份发出。"""
        system = build_system(provider)
        room = add_room(system, "chat_a", ["alex"])
        ai_id = room.ais[0].id

        async def kicked(*args, **kwargs) -> str:
            system.registry.remove(ai_id, "chat_a")
            return "still talking"

        provider.generate_completion = AsyncMock(side_effect=kicked)
        system.scheduler.on_human_message("chat_a")
        await drain(system.scheduler)

        assert ai_messages(system, "chat_a") == []

    @pytest.mark.asyncio
    async def test_fallback_skipped_when_responder_kicked(self, provider, drain) -> None:
        system = build_system(provider)
        room = add_room(system, "chat_a", ["alex"])
        ai_id = room.ais[0].id

        async def kicked_then_fail(*args, **kwargs) -> str:
            system.registry.remove(ai_id, "chat_a")
            raise CompletionError("down")

        provider.generate_completion = AsyncMock(side_effect=kicked_then_fail)
        system.scheduler.on_human_message("chat_a")
        await drain(system.scheduler)

        assert ai_messages(system, "chat_a") == []


# ── CHAIN ─────────────────────────────────────────────────────────────

class TestChain:
    """测试 AI 之间的接话。"""

    @pytest.mark.asyncio
    async def test_chain_is_bounded(self, provider, drain) -> None:
        system = build_system(provider, AI_CHAT_PROBABILITY=1.0, MAX_AI_RESPONSES_PER_CHAIN=3)
        room = add_room(system, "chat_a", ["alex", "maya", "riley"])

        system.scheduler.on_human_message("chat_a")
        await drain(system.scheduler)

        assert len(ai_messages(system, "chat_a")) == 3
        assert room.ai_chain_length == 3

    @pytest.mark.asyncio
    async def test_chain_speakers_alternate(self, provider, drain) -> None:
        """接话的 AI 总是不同于上一个发言者。"""
        system = build_system(provider, AI_CHAT_PROBABILITY=1.0, MAX_AI_RESPONSES_PER_CHAIN=4)
        add_room(system, "chat_a", ["alex", "maya"])

        system.scheduler.on_human_message("chat_a")
        await drain(system.scheduler)

        senders = [m.sender for m in system.ledger.recent("chat_a")]
        assert len(senders) == 4
        assert all(a != b for a, b in zip(senders, senders[1:]))

    @pytest.mark.asyncio
    async def test_single_ai_never_chains(self, provider, drain) -> None:
        system = build_system(provider, AI_CHAT_PROBABILITY=1.0)
        add_room(system, "chat_a", ["alex"])

        system.scheduler.on_human_message("chat_a")
        await drain(system.scheduler)

        assert len(ai_messages(system, "chat_a")) == 1

    @pytest.mark.asyncio
    async def test_probability_zero_never_chains(self, provider, drain) -> None:
        system = build_system(provider, AI_CHAT_PROBABILITY=0.0)
        add_room(system, "chat_a", ["alex", "maya"])

        system.scheduler.on_human_message("chat_a")
        await drain(system.scheduler)

        assert len(ai_messages(system, "chat_a")) == 1

    @pytest.mark.asyncio
    async def test_min_interval_blocks_chain(self, provider) -> None:
        system = build_system(provider, AI_CHAT_PROBABILITY=1.0, MIN_AI_CHAT_INTERVAL=60.0)
        room = add_room(system, "chat_a", ["alex", "maya"])
        room.last_ai_initiated_at = system.scheduler._clock()

        assert system.scheduler.maybe_continue_chain("chat_a", room.ais[0].id) is None

    @pytest.mark.asyncio
    async def test_min_interval_limits_cascade(self, provider, drain) -> None:
        """最小间隔大于 0 时，一次级联只有人类触发的回复加一次接话。"""
        system = build_system(
            provider, AI_CHAT_PROBABILITY=1.0, MIN_AI_CHAT_INTERVAL=5.0, MAX_AI_RESPONSES_PER_CHAIN=6,
        )
        room = add_room(system, "chat_a", ["alex", "maya", "riley"])

        system.scheduler.on_human_message("chat_a")
        await drain(system.scheduler)

        assert len(ai_messages(system, "chat_a")) == 2
        assert room.ai_chain_length == 2

    @pytest.mark.asyncio
    async def test_chain_failure_is_silent(self, provider, drain) -> None:
        """接话失败时不发兜底回复，链就此结束。"""
        provider.generate_completion = AsyncMock(
            side_effect=["first", CompletionError("down")],
        )
        system = build_system(provider, AI_CHAT_PROBABILITY=1.0)
        add_room(system, "chat_a", ["alex", "maya"])

        system.scheduler.on_human_message("chat_a")
        await drain(system.scheduler)

        assert ai_messages(system, "chat_a") == ["first"]


# ── AMBIENT / PLAYGROUND ──────────────────────────────────────────────

class TestAmbientAndPlayground:
    """测试环境闲聊与 playground 应答。"""

    @pytest.mark.asyncio
    async def test_ambient_tick_only_in_rooms_with_humans(self, provider, drain) -> None:
        system = build_system(provider, AI_AMBIENT_CHAT_PROBABILITY=1.0)
        add_room(system, "chat_busy", ["alex"])
        add_room(system, "chat_empty", ["maya"], human=None)
        add_room(system, "playground_lab", ["riley"], human=None)
        add_room(system, "chat_humans_only", [], human=None)

        tasks = system.scheduler.ambient_tick()
        await drain(system.scheduler)

        assert len(tasks) == 2
        assert ai_messages(system, "chat_busy") == ["hello from ai"]
        assert ai_messages(system, "playground_lab") == ["hello from ai"]
        assert ai_messages(system, "chat_empty") == []

    @pytest.mark.asyncio
    async def test_start_ai_conversation_resets_chain(self, provider) -> None:
        system = build_system(provider)
        room = add_room(system, "chat_a", ["alex"])
        room.ai_chain_length = 5

        await system.scheduler.start_ai_conversation("chat_a", room.ais[0].id)

        assert room.ai_chain_length == 1
        assert room.last_ai_initiated_at == system.scheduler._clock()

    @pytest.mark.asyncio
    async def test_ambient_failure_is_silent(self, provider) -> None:
        provider.generate_completion = AsyncMock(side_effect=CompletionError("down"))
        system = build_system(provider)
        room = add_room(system, "chat_a", ["alex"])

        await system.scheduler.start_ai_conversation("chat_a", room.ais[0].id)

        assert system.ledger.recent("chat_a") == []
        assert room.last_ai_initiated_at == 0.0

    @pytest.mark.asyncio
    async def test_playground_reply_does_not_chain(self, provider, drain) -> None:
        system = build_system(provider, AI_CHAT_PROBABILITY=1.0)
        room = add_room(system, "playground_lab", ["alex", "maya"])

        system.scheduler.on_playground_message("playground_lab")
        await drain(system.scheduler)

        assert len(ai_messages(system, "playground_lab")) == 1
        assert room.ai_chain_length == 0


# ── 取消 ──────────────────────────────────────────────────────────────

class TestCancellation:
    """测试房间关闭时的任务取消。"""

    @pytest.mark.asyncio
    async def test_cancel_room(self, provider) -> None:
        system = build_system(provider, AI_TYPING_DELAY_MIN=10.0, AI_TYPING_DELAY_MAX=10.0)
        add_room(system, "chat_a", ["alex"])

        task = system.scheduler.on_human_message("chat_a")
        assert system.scheduler.pending("chat_a") == [task]

        assert system.scheduler.cancel_room("chat_a") == 1
        with pytest.raises(asyncio.CancelledError):
            await task
        assert system.scheduler.pending() == []
        provider.generate_completion.assert_not_called()

    @pytest.mark.asyncio
    async def test_room_deleted_before_post(self, provider, drain) -> None:
        """生成期间房间被删除，结果不再写入任何地方。"""
        system = build_system(provider)
        room = add_room(system, "chat_a", ["alex"])

        async def slow_reply(*args, **kwargs) -> str:
            system.store.delete("chat_a")
            return "too late"

        provider.generate_completion = AsyncMock(side_effect=slow_reply)
        system.scheduler.on_human_message("chat_a")
        await drain(system.scheduler)

        assert "chat_a" not in system.store
        assert list(room.messages) == []
