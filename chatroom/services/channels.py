"""
chatroom.services.channels
~~~~~~~~~~~~~~~~~~~~~~~~~~

频道订阅协议 —— 会话层的订阅 / 退订 / 发言 / 断线处理。

每个 (连接, 房间) 的状态: Unsubscribed → Subscribing → Subscribed → (Unsubscribed | Terminated)。

- 同一连接在防抖窗口（默认 2s）内重复订阅同一房间，只重放当前名单与历史
- 已是完整成员（注册表与连接分组中都存在）的重复订阅，视为重连确认，不广播加入
- 业务错误只回给请求方连接，不影响房间内其他人
"""
from __future__ import annotations

import asyncio
import random
import time
from collections.abc import Callable

from chatroom.core.config import Settings, settings as default_settings
from chatroom.core.errors import ChatroomError, NameConflictError, NotSubscribedError
from chatroom.core.logging import get_logger
from chatroom.core.names import validate_username
from chatroom.schemas.events import (
    ChatMessage,
    ErrorPayload,
    JoinedRoomPayload,
    PlayerListUpdatePayload,
    PublicPlayer,
    RoomClosedPayload,
    SendMessageRequest,
    ServerEvents,
    UsernameStatusPayload,
)
from chatroom.services.broadcaster import ConnectionHub
from chatroom.services.commands import CommandHandler
from chatroom.services.history import MessageLedger
from chatroom.services.players import MembershipChange, PlayerRegistry
from chatroom.services.room_store import (
    Participant,
    Room,
    RoomStore,
    dm_participants,
    is_dm_room,
    is_playground_room,
)
from chatroom.services.scheduler import AIResponseScheduler

logger = get_logger(__name__)


class ChannelProtocol:
    """频道订阅协议处理器。

    Attributes:
        store: 房间仓库。
        registry: 参与者注册表。
        ledger: 消息历史。
        hub: 连接中心。
        scheduler: AI 发言调度器。
        commands: 斜杠命令处理器。
    """

    def __init__(
        self,
        store: RoomStore,
        registry: PlayerRegistry,
        ledger: MessageLedger,
        hub: ConnectionHub,
        scheduler: AIResponseScheduler,
        settings: Settings | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.registry = registry
        self.ledger = ledger
        self.hub = hub
        self.scheduler = scheduler
        self.settings = settings or default_settings
        self._rng = rng or random.Random()
        self._clock = clock
        # 连接 ID → {房间 ID: 最近一次成功订阅的时间}
        self._recent_subscriptions: dict[str, dict[str, float]] = {}
        self.commands = CommandHandler(self)

    # ── 发送工具 ──────────────────────────────────────────────────────

    async def send_error(self, connection_id: str, error: ChatroomError) -> None:
        await self.hub.emit(
            connection_id,
            ServerEvents.ERROR,
            ErrorPayload(message=error.message, details=error.details),
        )

    async def send_notice(self, connection_id: str, text: str, is_error: bool = False) -> None:
        """只发给单个连接的系统提示，不写入历史。"""
        await self.hub.emit(
            connection_id, ServerEvents.NEW_MESSAGE, ChatMessage.system(text, is_error=is_error),
        )

    async def post_system(self, room_id: str, text: str) -> ChatMessage:
        """向房间发布系统消息并写入历史。"""
        message = ChatMessage.system(text, room_id=room_id)
        self.ledger.append(room_id, message)
        await self.hub.emit_to_room(room_id, ServerEvents.NEW_MESSAGE, message)
        return message

    def public_player(self, participant: Participant, room_id: str) -> PublicPlayer:
        player = self.registry.to_public(participant, room_id)
        player.room_id = room_id
        return player

    async def broadcast_roster(self, room_id: str) -> None:
        await self.hub.emit_to_room(
            room_id,
            ServerEvents.PLAYER_LIST_UPDATE,
            PlayerListUpdatePayload(players=self.registry.public_roster(room_id), room_id=room_id),
        )

    async def broadcast_membership(
        self, change: MembershipChange, exclude: str | None = None,
    ) -> None:
        """广播一次成员变化：``playerJoined``/``playerLeft`` 加上最新名单。"""
        event = ServerEvents.PLAYER_JOINED if change.kind == "joined" else ServerEvents.PLAYER_LEFT
        await self.hub.emit_to_room(
            change.room_id, event, self.public_player(change.participant, change.room_id),
            exclude=exclude,
        )
        await self.broadcast_roster(change.room_id)

    def _joined_payload(
        self,
        room: Room,
        participant: Participant,
        is_reconnection: bool = False,
        is_debounced: bool = False,
    ) -> JoinedRoomPayload:
        return JoinedRoomPayload(
            user_id=participant.id,
            username=participant.name,
            players=self.registry.public_roster(room.room_id),
            room_id=room.room_id,
            history=self.ledger.recent(room.room_id),
            is_reconnection=is_reconnection,
            is_debounced=is_debounced,
        )

    # ── 房间初始化 ────────────────────────────────────────────────────

    def open_room(self, room_id: str) -> tuple[Room, bool]:
        """获取房间，首次创建时按房间类型填充 AI。"""
        room, created = self.store.get_or_create(room_id)
        if created:
            self.seed_room(room_id)
        return room, created

    def seed_room(self, room_id: str) -> list[MembershipChange]:
        """新房间初始化：私聊房间加入名字对应的角色，其他房间随机加入 3–5 个 AI。"""
        changes: list[MembershipChange] = []
        if is_dm_room(room_id):
            for name in dm_participants(room_id):
                if self.registry.personas.get_by_name(name) is None:
                    continue
                try:
                    changes.append(self.registry.add_ai(room_id, name))
                except ChatroomError as e:
                    logger.warning("私聊房间加入角色失败 | room=%s | name=%s | %s", room_id, name, e.details)
            return changes

        count = self._rng.randint(self.settings.INITIAL_AI_MIN, self.settings.INITIAL_AI_MAX)
        for _ in range(count):
            try:
                changes.append(self.registry.add_ai(room_id))
            except ChatroomError as e:
                logger.info("房间 AI 初始化提前结束 | room=%s | %s", room_id, e.details)
                break
        logger.info("房间初始化完成 | room=%s | AI 数量: %d", room_id, len(changes))
        return changes

    # ── 订阅 ──────────────────────────────────────────────────────────

    async def subscribe(
        self,
        connection_id: str,
        room_id: str,
        username: str | None = None,
        report_errors: bool = True,
    ) -> Participant | None:
        """订阅频道，成功时返回该连接在房间内的参与者。"""
        if not room_id:
            if report_errors:
                await self.send_error(
                    connection_id,
                    ChatroomError(
                        "A roomId is required to subscribe to a channel", message="Missing roomId",
                    ),
                )
            return None

        current = self.store.get(room_id)
        if current is not None and current.closing:
            if report_errors:
                await self.send_error(
                    connection_id,
                    ChatroomError(f"Channel {room_id} is closing", message="Channel closed"),
                )
            return None

        now = self._clock()
        recent = self._recent_subscriptions.get(connection_id, {})
        last = recent.get(room_id)
        if last is not None and now - last < self.settings.SUBSCRIPTION_DEBOUNCE_SECONDS:
            room = self.store.get(room_id)
            existing = room.players.get(connection_id) if room else None
            if room is not None and existing is not None:
                logger.debug("订阅防抖 | room=%s | %.2fs 内重复订阅", room_id, now - last)
                await self.hub.emit(
                    connection_id,
                    ServerEvents.JOINED_ROOM,
                    self._joined_payload(room, existing, is_reconnection=True, is_debounced=True),
                )
                return existing

        room = self.store.get(room_id)
        existing = room.players.get(connection_id) if room else None
        if room is not None and existing is not None and self.hub.in_group(connection_id, room_id):
            logger.debug("已是频道成员，视为重连确认 | room=%s", room_id)
            room.touch()
            self._mark_subscribed(connection_id, room_id, now)
            await self.hub.emit(
                connection_id,
                ServerEvents.JOINED_ROOM,
                self._joined_payload(room, existing, is_reconnection=True),
            )
            return existing

        # 先做全局用户名检查，被拒绝的订阅不会留下新建的房间
        requested = (username or "").strip()
        if requested and not self.registry.usernames.is_available(requested, connection_id):
            if report_errors:
                await self.send_error(
                    connection_id,
                    NameConflictError(
                        f'The username "{requested}" is already in use on the server. '
                        "Please choose a different username.",
                    ),
                )
            return None

        room, _ = self.open_room(room_id)
        try:
            change = self.registry.add_human(connection_id, room_id, requested or None)
        except ChatroomError as e:
            if report_errors:
                await self.send_error(connection_id, e)
            return None

        self.hub.join_group(connection_id, room_id)
        room.touch()
        self._mark_subscribed(connection_id, room_id, now)
        logger.info("订阅成功 | room=%s | name=%s", room_id, change.participant.name)

        await self.hub.emit(
            connection_id,
            ServerEvents.JOINED_ROOM,
            self._joined_payload(room, change.participant),
        )
        if change.is_new:
            await self.broadcast_membership(change, exclude=connection_id)
        return change.participant

    def _mark_subscribed(self, connection_id: str, room_id: str, now: float) -> None:
        self._recent_subscriptions.setdefault(connection_id, {})[room_id] = now

    async def join_room(
        self, connection_id: str, room_id: str | None = None, username: str | None = None,
    ) -> Participant | None:
        """旧版单房间加入，未指定房间时进入默认频道。"""
        return await self.subscribe(connection_id, room_id or self.settings.DEFAULT_ROOM, username)

    async def unsubscribe(self, connection_id: str, room_id: str) -> None:
        """退订频道。不在该频道时静默成功。"""
        if not room_id:
            await self.send_error(
                connection_id,
                ChatroomError(
                    "A roomId is required to unsubscribe from a channel", message="Missing roomId",
                ),
            )
            return

        self.hub.leave_group(connection_id, room_id)
        self._recent_subscriptions.get(connection_id, {}).pop(room_id, None)
        change = self.registry.remove(connection_id, room_id)
        if change is None:
            logger.debug("退订未加入的频道，忽略 | room=%s", room_id)
            return
        await self.broadcast_membership(change)

    # ── 发言 ──────────────────────────────────────────────────────────

    def _locate_sender(
        self, connection_id: str, room_id: str | None,
    ) -> tuple[Room, Participant]:
        if room_id:
            if not self.hub.in_group(connection_id, room_id):
                raise NotSubscribedError(
                    f"You cannot send messages to a channel you're not subscribed to: {room_id}",
                )
            room = self.store.get(room_id)
            if room is None:
                raise ChatroomError(
                    f"The specified channel does not exist: {room_id}", message="Channel not found",
                )
            participant = room.players.get(connection_id)
            if participant is None:
                raise ChatroomError(
                    f"You are not a member of channel: {room_id}", message="Not a member of channel",
                )
            return room, participant

        rooms = self.store.rooms_of(connection_id)
        if not rooms:
            raise ChatroomError(
                "You are not in any channel. Please join a channel first.", message="Not in a channel",
            )
        return rooms[0], rooms[0].players[connection_id]

    async def send_message(self, connection_id: str, request: SendMessageRequest) -> ChatMessage | None:
        """处理一条客户端发言：命令分发、写入历史、广播并触发 AI。"""
        try:
            room, sender = self._locate_sender(connection_id, request.room_id or request.chat_id)
        except ChatroomError as e:
            await self.send_error(connection_id, e)
            return None

        room_id = room.room_id
        if request.text.startswith("/"):
            await self.commands.handle(connection_id, sender, room_id, request.text)
            return None
        if not request.text.strip():
            return None

        playground = is_playground_room(room_id)
        speaker = sender
        if playground and request.sender_id and request.sender_id != sender.id:
            impersonated = room.players.get(request.sender_id)
            if impersonated is not None:
                logger.info("playground 代发 | room=%s | %s → %s", room_id, sender.name, impersonated.name)
                speaker = impersonated

        message = ChatMessage(
            sender=speaker.name, sender_id=speaker.id, text=request.text, room_id=room_id,
        )
        self.ledger.append(room_id, message)
        await self.hub.emit_to_room(room_id, ServerEvents.NEW_MESSAGE, message)

        if not sender.is_ai:
            room.touch()
        if not playground and not sender.is_ai:
            self.scheduler.on_human_message(room_id)
        elif playground and not speaker.is_ai:
            self.scheduler.on_playground_message(room_id)
        return message

    # ── 用户名 ────────────────────────────────────────────────────────

    def username_status(self, username: str) -> UsernameStatusPayload:
        """校验用户名格式与全局占用情况，不修改任何状态。"""
        error = validate_username(username, self.settings.USERNAME_MAX_LENGTH)
        if error is None and self.registry.usernames.is_taken(username):
            error = f'Username "{username}" is already taken.'
        return UsernameStatusPayload(username=username, is_available=error is None, error=error)

    async def check_username(self, connection_id: str, username: str) -> None:
        await self.hub.emit(
            connection_id, ServerEvents.USERNAME_AVAILABILITY_STATUS, self.username_status(username),
        )

    # ── 断线与关闭 ────────────────────────────────────────────────────

    async def handle_disconnect(self, connection_id: str) -> None:
        """连接断开：退出所有房间、释放用户名、清理防抖状态。"""
        self.hub.disconnect(connection_id)
        self._recent_subscriptions.pop(connection_id, None)
        for room in self.store.rooms_of(connection_id):
            change = self.registry.remove(connection_id, room.room_id)
            if change is not None:
                await self.broadcast_membership(change)

    async def terminate_room(self, room_id: str, reason: str) -> bool:
        """关闭房间：广播关闭通知、断开房间内人类连接，宽限期后删除房间。"""
        room = self.store.get(room_id)
        if room is None or room.closing:
            return False
        room.closing = True
        logger.info("关闭房间 | room=%s | reason=%s", room_id, reason)

        await self.hub.emit_to_room(
            room_id,
            ServerEvents.NEW_MESSAGE,
            ChatMessage.system(f"Chat is closing due to: {reason}.", room_id=room_id),
        )
        await self.hub.emit_to_room(
            room_id, ServerEvents.ROOM_CLOSED, RoomClosedPayload(reason=reason, room_id=room_id),
        )
        self.scheduler.cancel_room(room_id)
        await self._evict_all(room, reason)

        # 留出时间让关闭帧发送出去
        await asyncio.sleep(self.settings.ROOM_CLOSE_GRACE_SECONDS)
        # 宽限期内仍可能有成员残留，删除前再清一次，保证用户名被释放
        await self._evict_all(room, reason)
        if self.store.get(room_id) is room:
            self.store.delete(room_id)
        self.scheduler.cancel_room(room_id)
        return True

    async def _evict_all(self, room: Room, reason: str) -> None:
        for participant in list(room.players.values()):
            self.registry.remove(participant.id, room.room_id)
            if not participant.is_ai:
                self._recent_subscriptions.get(participant.id, {}).pop(room.room_id, None)
                await self.hub.close_connection(participant.id, reason)
