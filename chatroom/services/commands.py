"""
chatroom.services.commands
~~~~~~~~~~~~~~~~~~~~~~~~~~

聊天斜杠命令：``/join``、``/topic``、``/invite``、``/kick``。

命令在普通消息处理之前被拦截。参数缺失或格式不对时静默忽略，
未知命令同样静默忽略，不向客户端报错。
"""
from __future__ import annotations

import re
from typing import TYPE_CHECKING

from chatroom.core.errors import ChatroomError
from chatroom.core.logging import get_logger
from chatroom.schemas.events import ChannelJoinCommandPayload, ServerEvents
from chatroom.services.players import MembershipChange
from chatroom.services.room_store import CHAT_PREFIX, Participant

if TYPE_CHECKING:
    from chatroom.services.channels import ChannelProtocol

logger = get_logger(__name__)

# 双引号包裹的内容作为一个整体
_TOKEN_PATTERN = re.compile(r'[^\s"]+|"[^"]*"')


def tokenize(text: str) -> list[str]:
    return _TOKEN_PATTERN.findall(text)


def parse_invite_names(args: list[str]) -> list[str]:
    """``/invite a, @b`` → ``["a", "b"]``。"""
    names: list[str] = []
    for raw in " ".join(args).split(","):
        name = raw.strip()
        if name.startswith("@"):
            name = name[1:].strip()
        if name:
            names.append(name)
    return names


class CommandHandler:
    """斜杠命令分发器，复用协议层的发送与成员管理能力。"""

    def __init__(self, protocol: ChannelProtocol) -> None:
        self.protocol = protocol

    async def handle(
        self, connection_id: str, player: Participant, room_id: str, text: str,
    ) -> bool:
        """执行命令；返回是否识别了该命令。"""
        parts = tokenize(text)
        command = parts[0].lower() if parts else ""
        args = parts[1:]
        handler = {
            "/join": self._join,
            "/topic": self._topic,
            "/invite": self._invite,
            "/kick": self._kick,
        }.get(command)
        if handler is None:
            logger.debug("未知命令，忽略 | command=%s", command)
            return False
        if args:
            logger.info("执行命令 | room=%s | name=%s | command=%s", room_id, player.name, command)
            await handler(connection_id, player, room_id, args)
        return True

    async def _join(
        self, connection_id: str, player: Participant, room_id: str, args: list[str],
    ) -> None:
        channel = args[0].strip('"')
        if channel.startswith("#"):
            channel = channel[1:]
        if not channel:
            return
        target = f"{CHAT_PREFIX}{channel}"
        protocol = self.protocol

        if protocol.hub.in_group(connection_id, target):
            await protocol.send_notice(connection_id, f"You are already in channel #{channel}")
            return

        joined = await protocol.subscribe(connection_id, target, player.name, report_errors=False)
        if joined is None:
            return
        await protocol.send_notice(connection_id, f"You have joined #{channel}")
        await protocol.hub.emit(
            connection_id,
            ServerEvents.CHANNEL_JOIN_COMMAND,
            ChannelJoinCommandPayload(channel_id=target, channel_name=channel),
        )

    async def _topic(
        self, connection_id: str, player: Participant, room_id: str, args: list[str],
    ) -> None:
        topic = " ".join(args)
        if len(topic) >= 2 and topic.startswith('"') and topic.endswith('"'):
            topic = topic[1:-1]
        room = self.protocol.store.get(room_id)
        if room is None:
            return
        room.topic = topic
        await self.protocol.post_system(room_id, f"Topic set by {player.name}: {topic}")

    async def _invite(
        self, connection_id: str, player: Participant, room_id: str, args: list[str],
    ) -> None:
        protocol = self.protocol
        room = protocol.store.get(room_id)
        if room is None:
            return
        names = parse_invite_names(args)
        if not names:
            return

        limit = protocol.settings.MAX_CHAT_ROOM_TOTAL_PLAYERS
        invited: list[str] = []
        failed: list[tuple[str, str]] = []
        for name in names:
            if room.find_by_name(name) is not None:
                failed.append((name, "already in room"))
                continue
            if protocol.registry.personas.get_by_name(name) is None:
                failed.append((name, "persona not found"))
                continue
            if len(room.players) >= limit:
                failed.append((name, f"room at capacity ({len(room.players)}/{limit})"))
                continue
            try:
                change: MembershipChange = protocol.registry.add_ai(room_id, name)
            except ChatroomError as e:
                failed.append((name, e.message.lower()))
                continue
            invited.append(name)
            await protocol.hub.emit_to_room(
                room_id, ServerEvents.PLAYER_JOINED, protocol.public_player(change.participant, room_id),
            )

        if invited:
            joined_names = ", ".join(invited)
            await protocol.post_system(
                room_id, f"{player.name} has invited {joined_names} to the channel",
            )
            await protocol.send_notice(
                connection_id, f"Successfully invited {joined_names} to the channel",
            )
        for name, reason in failed:
            await protocol.send_notice(
                connection_id, f"Failed to invite {name}: {reason}", is_error=True,
            )
        if invited:
            await protocol.broadcast_roster(room_id)

    async def _kick(
        self, connection_id: str, player: Participant, room_id: str, args: list[str],
    ) -> None:
        protocol = self.protocol
        name = args[0].strip('"')
        target = protocol.registry.find_by_name(room_id, name)
        if target is None:
            return

        change = protocol.registry.remove(target.id, room_id)
        if change is None:
            return
        if not target.is_ai:
            protocol.hub.leave_group(target.id, room_id)

        await protocol.post_system(room_id, f"{player.name} has kicked {name} from the channel")
        await protocol.send_notice(connection_id, f"Successfully kicked {name} from the channel")
        await protocol.broadcast_membership(change)
