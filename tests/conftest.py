"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures —— 用假的 WebSocket 和 mock 的 LLM 提供者组装聊天系统，
使单元测试可在无网络环境下快速、确定性地运行。
"""
from __future__ import annotations

import asyncio
import os
import random
from collections.abc import Awaitable, Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DEFAULT_MODEL", "none")  # 不触碰真实模型

from chatroom.core.config import Settings  # noqa: E402
from chatroom.core.persona import PersonaManager  # noqa: E402
from chatroom.services.chat_system import ChatSystem  # noqa: E402
from chatroom.services.scheduler import AIResponseScheduler  # noqa: E402
from tests.factories import FakeClock, FakeWebSocket, make_personas, make_settings  # noqa: E402


@pytest.fixture()
def test_settings() -> Settings:
    return make_settings()


@pytest.fixture()
def personas() -> PersonaManager:
    return make_personas()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def provider() -> MagicMock:
    """mock 的 LLM 提供者，默认返回固定回复。"""
    mock = MagicMock()
    mock.model_name = "mock-model"
    mock.generate_completion = AsyncMock(return_value="hello from ai")
    return mock


@pytest.fixture()
def system(
    personas: PersonaManager, provider: MagicMock, test_settings: Settings, clock: FakeClock,
) -> ChatSystem:
    return ChatSystem(
        personas, provider=provider, settings=test_settings, rng=random.Random(7), clock=clock,
    )


@pytest.fixture()
def connect() -> Callable[[ChatSystem], Awaitable[tuple[str, FakeWebSocket]]]:
    """返回一个协程函数：为系统建立一个新的假连接。"""

    async def _connect(chat_system: ChatSystem) -> tuple[str, FakeWebSocket]:
        ws = FakeWebSocket()
        connection_id = await chat_system.hub.connect(ws)
        return connection_id, ws

    return _connect


@pytest.fixture()
def drain() -> Callable[[AIResponseScheduler], Awaitable[None]]:
    """返回一个协程函数：等待调度器中所有（包括链式产生的）任务完成。"""

    async def _drain(scheduler: AIResponseScheduler) -> None:
        while tasks := scheduler.pending():
            await asyncio.gather(*tasks, return_exceptions=True)

    return _drain
