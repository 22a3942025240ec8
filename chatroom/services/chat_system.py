"""
chatroom.services.chat_system
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

聊天系统组装根 —— 在 FastAPI lifespan 中创建一次并挂载到 ``app.state``。

所有服务通过构造函数显式注入，没有隐藏的全局单例；测试时可以替换
LLM 提供者、随机数源和时钟。
"""
from __future__ import annotations

import asyncio
import random
import time
from collections.abc import Callable

from chatroom.core.config import Settings, settings as default_settings
from chatroom.core.logging import get_logger
from chatroom.core.persona import PersonaManager
from chatroom.llm.provider import ModelProvider
from chatroom.services.broadcaster import ConnectionHub
from chatroom.services.channels import ChannelProtocol
from chatroom.services.chat_service import ChatService
from chatroom.services.history import MessageLedger
from chatroom.services.persona_resolver import PersonaResolver
from chatroom.services.players import PlayerRegistry, UsernameRegistry
from chatroom.services.reaper import InactivityReaper
from chatroom.services.room_store import RoomStore
from chatroom.services.scheduler import AIResponseScheduler

logger = get_logger(__name__)


class ChatSystem:
    """持有全部服务实例及后台任务。

    Attributes:
        personas: 静态角色管理器。
        store: 房间仓库。
        hub: 连接中心。
        protocol: 频道订阅协议。
        scheduler: AI 发言调度器。
        reaper: 不活跃房间清理器。
    """

    def __init__(
        self,
        personas: PersonaManager,
        provider: ModelProvider | None = None,
        settings: Settings | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings or default_settings
        rng = rng or random.Random()

        self.personas = personas
        self.provider = provider or ModelProvider(self.settings)
        self.store = RoomStore(self.settings.MAX_HISTORY_MESSAGES, clock=clock)
        self.ledger = MessageLedger(self.store)
        self.usernames = UsernameRegistry()
        self.resolver = PersonaResolver(personas, rng=rng)
        self.registry = PlayerRegistry(
            self.store, self.usernames, personas, self.resolver, self.settings, rng=rng,
        )
        self.chat_service = ChatService(self.resolver, self.provider)
        self.hub = ConnectionHub()
        self.scheduler = AIResponseScheduler(
            self.store, self.ledger, self.chat_service, self.hub, self.settings, rng=rng, clock=clock,
        )
        self.protocol = ChannelProtocol(
            self.store, self.registry, self.ledger, self.hub, self.scheduler,
            self.settings, rng=rng, clock=clock,
        )
        self.reaper = InactivityReaper(self.store, self.protocol, self.settings, clock=clock)
        self._background: list[asyncio.Task] = []

        # 角色用户名预登记，人类不能占用
        for username in personas.usernames():
            self.usernames.reserve(username)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> ChatSystem:
        """从配置加载角色目录并组装系统。"""
        settings = settings or default_settings
        personas = PersonaManager()
        count = personas.load_all(settings.persona_path)
        logger.info("角色加载完成 | count=%d | dir=%s", count, settings.persona_path)
        return cls(personas, settings=settings)

    def start(self) -> None:
        """启动后台循环：不活跃清理、环境闲聊、房间统计。"""
        if self._background:
            return
        self._background = [
            asyncio.create_task(self.reaper.run(), name="inactivity-reaper"),
            asyncio.create_task(self.scheduler.run_ambient_loop(), name="ambient-chat"),
            asyncio.create_task(self.reaper.run_stats(), name="room-stats"),
        ]
        logger.info("后台任务已启动 | count=%d", len(self._background))

    async def stop(self) -> None:
        """停止后台循环并取消所有待执行的 AI 调度。"""
        for task in self._background:
            task.cancel()
        await asyncio.gather(*self._background, return_exceptions=True)
        self._background = []
        self.scheduler.cancel_all()
        logger.info("后台任务已停止")

    def stats(self) -> dict[str, int]:
        rooms = list(self.store)
        return {
            "rooms": len(rooms),
            "humans": sum(len(r.humans) for r in rooms),
            "ais": sum(len(r.ais) for r in rooms),
            "connections": self.hub.online_count,
        }
