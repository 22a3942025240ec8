"""
tests.factories
~~~~~~~~~~~~~~~

测试用的假对象与构造工具：假 WebSocket、可推进时钟、零延迟配置、测试角色。
"""
from __future__ import annotations

import json
import time
from typing import Any

from chatroom.core.config import Settings
from chatroom.core.persona import (
    ChatSettings,
    GameSettings,
    PersonaConfig,
    PersonalityConfig,
    PersonaManager,
)


class FakeWebSocket:
    """记录所有发送帧的假 WebSocket。"""

    def __init__(self) -> None:
        self.accepted: bool = False
        self.sent: list[dict[str, Any]] = []
        self.closed: tuple[int, str] | None = None

    async def accept(self) -> None:
        self.accepted = True

    async def send_text(self, text: str) -> None:
        self.sent.append(json.loads(text))

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed = (code, reason)

    def events(self, name: str | None = None) -> list[dict[str, Any]]:
        """按事件名过滤已发送的帧。"""
        return [frame for frame in self.sent if name is None or frame["event"] == name]

    def last(self, name: str) -> dict[str, Any]:
        """指定事件最后一帧的 ``data``。"""
        return self.events(name)[-1]["data"]

    def texts(self) -> list[str]:
        """所有 ``newMessage`` 帧的正文。"""
        return [frame["data"]["text"] for frame in self.events("newMessage")]

    def clear(self) -> None:
        self.sent.clear()


class FakeClock:
    """可手动推进的时钟。"""

    def __init__(self, start: float | None = None) -> None:
        self.now: float = time.time() if start is None else start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_settings(**overrides: Any) -> Settings:
    """零延迟、默认不接话的测试配置。"""
    values: dict[str, Any] = {
        "ENVIRONMENT": "test",
        "DEFAULT_MODEL": "none",
        "INITIAL_AI_MIN": 2,
        "INITIAL_AI_MAX": 2,
        "AI_TYPING_DELAY_MIN": 0.0,
        "AI_TYPING_DELAY_MAX": 0.0,
        "AI_CHAIN_DELAY_MIN": 0.0,
        "AI_CHAIN_DELAY_MAX": 0.0,
        "PLAYGROUND_TYPING_DELAY_MIN": 0.0,
        "PLAYGROUND_TYPING_DELAY_MAX": 0.0,
        "AI_CHAT_PROBABILITY": 0.0,
        "MIN_AI_CHAT_INTERVAL": 0.0,
        "ROOM_CLOSE_GRACE_SECONDS": 0.0,
        "ALWAYS_ON_ROOMS": [],
    }
    values.update(overrides)
    return Settings(**values)


def make_persona(
    name: str,
    chat_enabled: bool = True,
    auto_invite: bool = True,
    traits: list[str] | None = None,
    typing_patterns: str = "",
    web_search: bool = False,
) -> PersonaConfig:
    return PersonaConfig(
        name=name,
        username=name.lower(),
        bio=f"{name} bio",
        profile=f"I am {name}, a tester from nowhere. I'm here to help.",
        personality=PersonalityConfig(
            traits=traits or ["friendly"],
            communication_style=f"{name} style",
            interests=[f"{name.lower()}-stuff"],
            background=f"{name} background",
            typing_patterns=typing_patterns,
            common_phrases=[f"{name.lower()} says hi"],
            emoji_usage="rare",
        ),
        game_settings=GameSettings(enabled=True, strategy=f"{name} strategy"),
        chat_settings=ChatSettings(
            enabled=chat_enabled, auto_invite=auto_invite, web_search=web_search,
        ),
    )


def make_personas() -> PersonaManager:
    """alex / maya 可自动邀请，riley 只能手动邀请，quinn 不参与聊天。"""
    return PersonaManager(
        [
            make_persona("Alex", traits=["curious", "analytical"], typing_patterns="fast"),
            make_persona("Maya", traits=["friendly", "energetic"], typing_patterns="slow"),
            make_persona("Riley", auto_invite=False, traits=["perfectionist"], typing_patterns="careful"),
            make_persona("Quinn", chat_enabled=False, auto_invite=False, traits=["reserved"]),
        ],
    )
