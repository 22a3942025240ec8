"""
chatroom.services.reaper
~~~~~~~~~~~~~~~~~~~~~~~~

不活跃房间清理 —— 周期性扫描，关闭长时间没有人类活动的房间。

playground 房间和常驻频道（``ALWAYS_ON_ROOMS``）不参与清理。
"""
from __future__ import annotations

import asyncio
import time
from collections.abc import Callable

from chatroom.core.config import Settings, settings as default_settings
from chatroom.core.logging import get_logger
from chatroom.services.channels import ChannelProtocol
from chatroom.services.room_store import RoomStore, is_playground_room

logger = get_logger(__name__)

REASON_INACTIVITY: str = "Inactivity"
REASON_NO_HUMANS: str = "No human players remaining"


class InactivityReaper:
    """不活跃房间清理器。

    Attributes:
        store: 房间仓库。
        protocol: 协议层，负责实际的房间关闭流程。
    """

    def __init__(
        self,
        store: RoomStore,
        protocol: ChannelProtocol,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.protocol = protocol
        self.settings = settings or default_settings
        self._clock = clock

    def is_exempt(self, room_id: str) -> bool:
        return is_playground_room(room_id) or room_id in self.settings.ALWAYS_ON_ROOMS

    async def check_once(self) -> list[tuple[str, str]]:
        """执行一次扫描，返回被关闭的 ``(room_id, reason)`` 列表。

        不管房间里是否还有 AI，只要超时就关闭；仍有人类但沉默太久与人类已全部离开
        使用不同的关闭原因。
        """
        now = self._clock()
        timeout = self.settings.INACTIVITY_TIMEOUT_SECONDS
        expired: list[tuple[str, str]] = []
        for room in self.store:
            if self.is_exempt(room.room_id) or room.closing:
                continue
            idle = now - room.last_human_activity
            if idle <= timeout:
                continue
            reason = REASON_INACTIVITY if room.humans else REASON_NO_HUMANS
            logger.info(
                "房间不活跃 | room=%s | idle=%.0fs | humans=%d", room.room_id, idle, len(room.humans),
            )
            expired.append((room.room_id, reason))

        for room_id, reason in expired:
            await self.protocol.terminate_room(room_id, reason)
        return expired

    async def run(self) -> None:
        """后台循环：每 ``INACTIVITY_CHECK_INTERVAL`` 秒扫描一次。"""
        while True:
            await asyncio.sleep(self.settings.INACTIVITY_CHECK_INTERVAL)
            try:
                await self.check_once()
            except Exception as e:
                logger.error("不活跃房间扫描异常: %s", e, exc_info=True)

    def log_room_stats(self) -> None:
        """输出一次房间统计。"""
        rooms = list(self.store)
        logger.info(
            "房间统计 | rooms=%d | humans=%d | ais=%d",
            len(rooms),
            sum(len(r.humans) for r in rooms),
            sum(len(r.ais) for r in rooms),
        )
        for room in rooms:
            logger.debug(
                "  room=%s | humans=%d | ais=%d | messages=%d",
                room.room_id, len(room.humans), len(room.ais), len(room.messages),
            )

    async def run_stats(self) -> None:
        while True:
            await asyncio.sleep(self.settings.ROOM_STATS_INTERVAL)
            self.log_room_stats()
