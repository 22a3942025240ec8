"""
chatroom.services.scheduler
~~~~~~~~~~~~~~~~~~~~~~~~~~~

AI 发言调度器 —— 决定何时、由哪个 AI 发言。

触发路径:
  - ``HUMAN``      人类在普通房间发言后，随机一个 AI 在 0.8–2s 的"打字"延迟后回复
  - ``CHAIN``      AI 回复成功后，按概率 / 间隔 / 链长限制让另一个 AI 接话
  - ``AMBIENT``    全局定时器，给有人（或 playground）且有 AI 的房间开启新话题
  - ``PLAYGROUND`` playground 房间的简单应答，不接链

所有延迟都是真正的 ``asyncio.sleep``，不阻塞事件循环。每个延迟任务按房间登记，
房间关闭时统一取消；回调真正执行时仍会重新读取房间与发言 AI 的当前状态，
房间或 AI 已不存在则静默放弃。

LLM 返回空白被视为 "AI 选择沉默"：不发消息、不推进对话链。
"""
from __future__ import annotations

import asyncio
import random
import time
from collections.abc import Callable, Coroutine
from enum import Enum
from typing import Any

from chatroom.core.config import Settings, settings as default_settings
from chatroom.core.errors import CompletionError
from chatroom.core.logging import get_logger
from chatroom.prompts.chat import build_topic_note
from chatroom.schemas.events import ChatMessage, ServerEvents
from chatroom.services.broadcaster import ConnectionHub
from chatroom.services.chat_service import ChatService
from chatroom.services.history import MessageLedger
from chatroom.services.room_store import Participant, Room, RoomStore, is_playground_room

logger = get_logger(__name__)

FALLBACK_REPLY: str = "That's interesting! Tell me more about that."


class ResponseTrigger(str, Enum):
    HUMAN = "human"
    CHAIN = "chain"
    AMBIENT = "ambient"
    PLAYGROUND = "playground"


class AIResponseScheduler:
    """按房间调度 AI 发言。

    Attributes:
        store: 房间仓库。
        ledger: 消息历史。
        chat_service: AI 发言生成服务。
        hub: 连接中心，用于广播 ``newMessage``。
    """

    def __init__(
        self,
        store: RoomStore,
        ledger: MessageLedger,
        chat_service: ChatService,
        hub: ConnectionHub,
        settings: Settings | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.chat_service = chat_service
        self.hub = hub
        self.settings = settings or default_settings
        self._rng = rng or random.Random()
        self._clock = clock
        self._tasks: dict[str, set[asyncio.Task]] = {}

    # ── 任务登记 ──────────────────────────────────────────────────────

    def _spawn(self, room_id: str, coro: Coroutine[Any, Any, None]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.setdefault(room_id, set()).add(task)
        task.add_done_callback(lambda t: self._on_task_done(room_id, t))
        return task

    def _on_task_done(self, room_id: str, task: asyncio.Task) -> None:
        tasks = self._tasks.get(room_id)
        if tasks is not None:
            tasks.discard(task)
            if not tasks:
                del self._tasks[room_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error("AI 调度任务异常 | room=%s", room_id, exc_info=task.exception())

    def pending(self, room_id: str | None = None) -> list[asyncio.Task]:
        """尚未完成的调度任务（可按房间过滤）。"""
        if room_id is not None:
            return [t for t in self._tasks.get(room_id, ()) if not t.done()]
        return [t for tasks in self._tasks.values() for t in tasks if not t.done()]

    def cancel_room(self, room_id: str) -> int:
        """取消房间内所有待执行的调度任务，返回取消数量。"""
        tasks = self._tasks.pop(room_id, set())
        for task in tasks:
            task.cancel()
        if tasks:
            logger.info("已取消房间调度任务 | room=%s | count=%d", room_id, len(tasks))
        return len(tasks)

    def cancel_all(self) -> None:
        for room_id in list(self._tasks):
            self.cancel_room(room_id)

    # ── 公共工具 ──────────────────────────────────────────────────────

    def _current(self, room_id: str, participant_id: str) -> tuple[Room, Participant] | None:
        """重新读取房间和 AI 的当前状态，任一不存在返回 None。"""
        room = self.store.get(room_id)
        if room is None:
            return None
        participant = room.players.get(participant_id)
        if participant is None:
            return None
        return room, participant

    def _context(self, room: Room, responder: Participant) -> list[ChatMessage]:
        history = self.ledger.recent(room.room_id)
        note = build_topic_note(room, responder.name)
        return [note, *history] if note else history

    async def _generate(
        self, room: Room, responder: Participant, custom_template: str | None = None,
    ) -> str:
        raw = await self.chat_service.generate_response_with_context(
            responder, self._context(room, responder), custom_template,
        )
        return (raw or "").strip()

    async def _post(
        self, room_id: str, speaker: Participant, text: str, trigger: ResponseTrigger,
    ) -> ChatMessage | None:
        """写入历史并广播；房间已删除或发言者已离开时返回 None。"""
        if self._current(room_id, speaker.id) is None:
            logger.info("发言者已不在房间，丢弃回复 | room=%s | ai=%s", room_id, speaker.name)
            return None
        message = ChatMessage(sender=speaker.name, sender_id=speaker.id, text=text, room_id=room_id)
        self.ledger.append(room_id, message)
        logger.info("AI 发言 | room=%s | ai=%s | trigger=%s", room_id, speaker.name, trigger.value)
        await self.hub.emit_to_room(room_id, ServerEvents.NEW_MESSAGE, message)
        return message

    def _delay(self, low: float, high: float) -> float:
        return low + self._rng.random() * (high - low)

    # ── HUMAN ─────────────────────────────────────────────────────────

    def on_human_message(
        self, room_id: str, custom_template: str | None = None,
    ) -> asyncio.Task | None:
        """人类发言后安排一个 AI 回复。房间里没有 AI 时返回 None。"""
        room = self.store.get(room_id)
        if room is None or not room.ais:
            return None
        responder = self._rng.choice(room.ais)
        delay = self._delay(self.settings.AI_TYPING_DELAY_MIN, self.settings.AI_TYPING_DELAY_MAX)
        logger.debug("安排 AI 回复 | room=%s | ai=%s | delay=%.2fs", room_id, responder.name, delay)
        return self._spawn(
            room_id, self._respond_to_human(room_id, responder.id, delay, custom_template),
        )

    async def _respond_to_human(
        self, room_id: str, responder_id: str, delay: float, custom_template: str | None,
    ) -> None:
        await asyncio.sleep(delay)
        current = self._current(room_id, responder_id)
        if current is None:
            return
        room, responder = current

        try:
            text = await self._generate(room, responder, custom_template)
        except CompletionError as e:
            logger.warning("AI 回复生成失败，使用兜底回复 | room=%s | ai=%s | %s", room_id, responder.name, e)
            await self._post(room_id, responder, FALLBACK_REPLY, ResponseTrigger.HUMAN)
            return

        if not text:
            logger.info("AI 选择不回复 | room=%s | ai=%s", room_id, responder.name)
            return
        if await self._post(room_id, responder, text, ResponseTrigger.HUMAN) is None:
            return
        room.ai_chain_length = 1
        self.maybe_continue_chain(room_id, responder.id)

    # ── CHAIN ─────────────────────────────────────────────────────────

    def maybe_continue_chain(self, room_id: str, source_id: str) -> asyncio.Task | None:
        """按限制条件决定是否让另一个 AI 接话。

        条件全部满足才会接话：随机数不超过接话概率、距上次 AI 主动发言已过最小间隔、
        链长未达上限、房间里还有别的 AI。
        """
        room = self.store.get(room_id)
        if room is None:
            return None
        if self._rng.random() > self.settings.AI_CHAT_PROBABILITY:
            return None
        if self._clock() - room.last_ai_initiated_at < self.settings.MIN_AI_CHAT_INTERVAL:
            return None
        if room.ai_chain_length >= self.settings.MAX_AI_RESPONSES_PER_CHAIN:
            return None
        others = [p for p in room.ais if p.id != source_id]
        if not others:
            return None

        responder = self._rng.choice(others)
        delay = self._delay(self.settings.AI_CHAIN_DELAY_MIN, self.settings.AI_CHAIN_DELAY_MAX)
        return self._spawn(room_id, self._continue_chain(room_id, responder.id, delay))

    async def _continue_chain(self, room_id: str, responder_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        current = self._current(room_id, responder_id)
        if current is None:
            return
        room, responder = current

        try:
            text = await self._generate(room, responder)
        except CompletionError as e:
            logger.warning("AI 接话失败，放弃 | room=%s | ai=%s | %s", room_id, responder.name, e)
            return
        if not text:
            logger.info("AI 选择不接话 | room=%s | ai=%s", room_id, responder.name)
            return
        if await self._post(room_id, responder, text, ResponseTrigger.CHAIN) is None:
            return

        room.ai_chain_length += 1
        room.last_ai_initiated_at = self._clock()
        # 刚刷新了 last_ai_initiated_at，MIN_AI_CHAT_INTERVAL > 0 时链在此结束
        self.maybe_continue_chain(room_id, responder.id)

    # ── AMBIENT ───────────────────────────────────────────────────────

    async def start_ai_conversation(self, room_id: str, initiator_id: str) -> None:
        """由指定 AI 开启一段新话题。失败或空回复都静默放弃。"""
        current = self._current(room_id, initiator_id)
        if current is None:
            return
        room, initiator = current

        try:
            text = await self._generate(room, initiator)
        except CompletionError as e:
            logger.warning("AI 开启话题失败 | room=%s | ai=%s | %s", room_id, initiator.name, e)
            return
        if not text:
            logger.info("AI 选择不开启话题 | room=%s | ai=%s", room_id, initiator.name)
            return
        if await self._post(room_id, initiator, text, ResponseTrigger.AMBIENT) is None:
            return
        room.last_ai_initiated_at = self._clock()
        room.ai_chain_length = 1

    def ambient_tick(self) -> list[asyncio.Task]:
        """对每个符合条件的房间掷一次骰子，命中则安排一个 AI 开启话题。"""
        tasks: list[asyncio.Task] = []
        for room in self.store:
            if not (is_playground_room(room.room_id) or room.humans):
                continue
            ais = room.ais
            if not ais:
                continue
            if self._rng.random() >= self.settings.AI_AMBIENT_CHAT_PROBABILITY:
                continue
            initiator = self._rng.choice(ais)
            logger.info("环境闲聊 | room=%s | ai=%s", room.room_id, initiator.name)
            tasks.append(
                self._spawn(room.room_id, self.start_ai_conversation(room.room_id, initiator.id)),
            )
        return tasks

    async def run_ambient_loop(self) -> None:
        """后台循环：每隔随机的 2–5 分钟执行一次 ``ambient_tick``。"""
        while True:
            await asyncio.sleep(
                self._delay(
                    self.settings.AI_AMBIENT_CHAT_MIN_INTERVAL,
                    self.settings.AI_AMBIENT_CHAT_MAX_INTERVAL,
                ),
            )
            try:
                self.ambient_tick()
            except Exception as e:
                logger.error("环境闲聊调度异常: %s", e, exc_info=True)

    # ── PLAYGROUND ────────────────────────────────────────────────────

    def on_playground_message(self, room_id: str) -> asyncio.Task | None:
        """playground 房间：随机一个 AI 在短延迟后回复，不接链。"""
        room = self.store.get(room_id)
        if room is None or not room.ais:
            return None
        responder = self._rng.choice(room.ais)
        delay = self._delay(
            self.settings.PLAYGROUND_TYPING_DELAY_MIN, self.settings.PLAYGROUND_TYPING_DELAY_MAX,
        )
        return self._spawn(room_id, self._respond_in_playground(room_id, responder.id, delay))

    async def _respond_in_playground(self, room_id: str, responder_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        current = self._current(room_id, responder_id)
        if current is None:
            return
        room, responder = current
        try:
            text = await self._generate(room, responder)
        except CompletionError as e:
            logger.warning("playground 回复失败 | room=%s | ai=%s | %s", room_id, responder.name, e)
            return
        if text:
            await self._post(room_id, responder, text, ResponseTrigger.PLAYGROUND)
