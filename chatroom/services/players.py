"""
chatroom.services.players
~~~~~~~~~~~~~~~~~~~~~~~~~

参与者注册表：向房间添加/移除人类与 AI，维护全局用户名唯一性。

注册表本身不做任何网络 I/O，每次成员变化都返回 ``MembershipChange``，
由协议层负责广播 ``playerJoined`` / ``playerLeft`` / ``playerListUpdate``。
"""
from __future__ import annotations

import random
from typing import Any, Literal

from pydantic import BaseModel
from pydantic.alias_generators import to_camel

from chatroom.core.config import Settings, settings as default_settings
from chatroom.core.errors import (
    ChatroomError,
    NameConflictError,
    PersonaAlreadyPresentError,
    PersonaNotEligibleError,
    PersonaNotFoundError,
    RoomCapacityError,
)
from chatroom.core.logging import get_logger
from chatroom.core.names import generate_player_id, generate_silly_name
from chatroom.core.persona import PersonaConfig, PersonaManager
from chatroom.schemas.events import PersonaSummary, PublicPlayer
from chatroom.services.persona_resolver import PersonaResolver
from chatroom.services.room_store import (
    Participant,
    Room,
    RoomStore,
    is_chat_room,
    is_playground_room,
)

logger = get_logger(__name__)

_MAX_NAME_ATTEMPTS = 10


class MembershipChange(BaseModel):
    """一次成员变化的结构化结果。"""

    kind: Literal["joined", "left"]
    room_id: str
    participant: Participant
    # False 表示同一连接重复加入，无需广播
    is_new: bool = True


# ── 全局用户名 ────────────────────────────────────────────────────────

class UsernameRegistry:
    """进程级用户名集合（小写）。

    值为持有该名字的连接 ID；角色用户名在启动时预登记，持有者为 None，
    任何人类连接都不能再占用。
    """

    def __init__(self) -> None:
        self._holders: dict[str, str | None] = {}

    def reserve(self, name: str) -> None:
        """为静态角色预留用户名。"""
        self._holders.setdefault(name.lower(), None)

    def is_taken(self, name: str) -> bool:
        return name.lower() in self._holders

    def held_by(self, name: str) -> str | None:
        return self._holders.get(name.lower())

    def is_available(self, name: str, connection_id: str | None = None) -> bool:
        """名字未被占用，或正是被 ``connection_id`` 自己占用。"""
        key = name.lower()
        if key not in self._holders:
            return True
        holder = self._holders[key]
        return holder is not None and holder == connection_id

    def claim(self, name: str, connection_id: str) -> None:
        if not self.is_available(name, connection_id):
            raise NameConflictError(
                f'The username "{name}" is already in use on the server. '
                "Please choose a different username.",
            )
        self._holders[name.lower()] = connection_id

    def release(self, name: str, connection_id: str) -> bool:
        """释放名字；只有持有者本人可以释放，预留的角色名不会被释放。"""
        key = name.lower()
        if key in self._holders and self._holders[key] == connection_id:
            del self._holders[key]
            return True
        return False

    def __len__(self) -> int:
        return len(self._holders)


# ── 参与者注册表 ──────────────────────────────────────────────────────

class PlayerRegistry:
    """房间成员管理。

    Attributes:
        store: 房间仓库。
        usernames: 全局用户名集合。
        personas: 静态角色管理器。
        resolver: AI 画像解析器，AI 加入时立即解析。
    """

    def __init__(
        self,
        store: RoomStore,
        usernames: UsernameRegistry,
        personas: PersonaManager,
        resolver: PersonaResolver,
        settings: Settings | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.store = store
        self.usernames = usernames
        self.personas = personas
        self.resolver = resolver
        self.settings = settings or default_settings
        self._rng = rng or random.Random()

    def _room(self, room_id: str) -> Room:
        room = self.store.get(room_id)
        if room is None:
            raise ChatroomError(f"Channel {room_id} does not exist", message="Channel not found")
        return room

    # ── 人类 ──

    def add_human(
        self, connection_id: str, room_id: str, requested_name: str | None = None,
    ) -> MembershipChange:
        """把人类连接加入房间。

        同一连接重复加入时幂等返回已有参与者（``is_new=False``）。

        Raises:
            NameConflictError: 名字已被房间内其他人或其他连接占用。
        """
        room = self._room(room_id)
        existing = room.players.get(connection_id)
        if existing is not None:
            return MembershipChange(
                kind="joined", room_id=room_id, participant=existing, is_new=False,
            )

        name = (requested_name or "").strip() or self._generate_human_name()
        other = room.find_by_name(name)
        if other is not None and other.id != connection_id:
            raise NameConflictError(
                f'The username "{name}" is already taken in this channel. '
                "Please choose a different username.",
                message="Username already taken in room",
            )
        self.usernames.claim(name, connection_id)

        participant = Participant(id=connection_id, name=name, is_ai=False)
        room.players[connection_id] = participant
        room.touch()
        logger.info(
            "玩家加入 | room=%s | name=%s | 当前人数: %d", room_id, name, len(room.players),
        )
        return MembershipChange(kind="joined", room_id=room_id, participant=participant)

    def _generate_human_name(self) -> str:
        name = generate_silly_name(self._rng)
        for _ in range(_MAX_NAME_ATTEMPTS):
            if not self.usernames.is_taken(name):
                break
            name = generate_silly_name(self._rng)
        return name

    # ── AI ──

    def add_ai(self, room_id: str, persona_name: str | None = None) -> MembershipChange:
        """向房间添加一个 AI。

        - 指定角色名：角色必须存在、不在房间内，且在普通聊天频道中须开启 chat
          （playground 不受此限制）
        - 未指定：聊天频道优先自动邀请可邀请的角色，playground 添加通用 AI，
          其他类型的房间拒绝

        Raises:
            RoomCapacityError / PersonaNotFoundError / PersonaAlreadyPresentError /
            PersonaNotEligibleError
        """
        room = self._room(room_id)
        max_ai = self.settings.MAX_AI_PLAYERS_IN_CHAT
        if len(room.ais) >= max_ai:
            raise RoomCapacityError(
                f"Room {room_id} already has maximum AI players ({len(room.ais)}/{max_ai}).",
            )

        playground = is_playground_room(room_id)
        chat_room = is_chat_room(room_id) and not playground
        names_in_room = {p.name.lower() for p in room.players.values()}

        persona: PersonaConfig | None = None
        if persona_name:
            persona = self.personas.get_by_name(persona_name)
            if persona is None:
                raise PersonaNotFoundError(f'Persona "{persona_name}" not found.')
            if persona.handle.lower() in names_in_room or persona.name.lower() in names_in_room:
                raise PersonaAlreadyPresentError(
                    f'Persona "{persona.name}" is already in room {room_id}.',
                )
            if chat_room and not persona.chat_settings.enabled:
                raise PersonaNotEligibleError(
                    f'Persona "{persona.name}" is not enabled for chat rooms.',
                )
            name = persona.handle
        elif chat_room:
            candidates = [
                p for p in self.personas.auto_invitable()
                if p.handle.lower() not in names_in_room
            ]
            if candidates:
                persona = self._rng.choice(candidates)
                name = persona.handle
            else:
                persona, name = self._generic_ai(names_in_room)
        elif playground:
            persona, name = self._generic_ai(names_in_room)
        else:
            raise PersonaNotEligibleError(
                f"Cannot add a generic AI to room {room_id}.",
                message="AI not allowed in this room",
            )

        participant = Participant(
            id=generate_player_id(),
            name=name,
            is_ai=True,
            bio=persona.bio if persona else None,
        )
        room.players[participant.id] = participant
        self.resolver.resolve(name, participant.id)
        logger.info(
            "AI 加入 | room=%s | name=%s | persona=%s | 当前人数: %d",
            room_id, name, persona.name if persona else "-", len(room.players),
        )
        return MembershipChange(kind="joined", room_id=room_id, participant=participant)

    def _generic_ai(self, names_in_room: set[str]) -> tuple[PersonaConfig | None, str]:
        """通用 AI：优先随机挑一个房间里还没有的角色，否则生成随机名字。"""
        unused = [p for p in self.personas.all() if p.handle.lower() not in names_in_room]
        if unused:
            persona = self._rng.choice(unused)
            return persona, persona.handle

        name = generate_silly_name(self._rng)
        for _ in range(_MAX_NAME_ATTEMPTS):
            if name.lower() not in names_in_room:
                return None, name
            name = generate_silly_name(self._rng)
        return None, f"{name}_{generate_player_id()}"

    # ── 移除 ──

    def remove(self, participant_id: str, room_id: str) -> MembershipChange | None:
        """把参与者移出房间；不在房间内时返回 None。

        人类离开时释放其用户名（同一连接仍以该名字留在其他房间时除外），
        AI 离开时清理其画像缓存。
        """
        room = self.store.get(room_id)
        if room is None:
            return None
        participant = room.players.pop(participant_id, None)
        if participant is None:
            return None

        if participant.is_ai:
            self.resolver.forget(participant_id)
        elif not self._still_holds(participant_id, participant.name):
            self.usernames.release(participant.name, participant_id)

        logger.info(
            "参与者离开 | room=%s | name=%s | 剩余人数: %d",
            room_id, participant.name, len(room.players),
        )
        return MembershipChange(kind="left", room_id=room_id, participant=participant)

    def _still_holds(self, connection_id: str, name: str) -> bool:
        lowered = name.lower()
        return any(
            room.players[connection_id].name.lower() == lowered
            for room in self.store.rooms_of(connection_id)
        )

    def find_by_name(self, room_id: str, name: str) -> Participant | None:
        room = self.store.get(room_id)
        return room.find_by_name(name) if room else None

    # ── 客户端视图 ──

    def to_public(self, participant: Participant, room_id: str) -> PublicPlayer:
        """转换为客户端视图。只有 playground 房间暴露 isAI 与画像详情。"""
        player = PublicPlayer(id=participant.id, name=participant.name, bio=participant.bio)
        if not is_playground_room(room_id):
            return player

        player.is_ai = participant.is_ai
        if participant.is_ai:
            persona = self.resolver.get_profile(participant.id)
            if persona is not None:
                scheduling = self.resolver.scheduling_for(participant.id)
                player.persona = PersonaSummary(
                    profile=persona.profile,
                    personality=_camel_dict(persona.personality.model_dump()),
                    chat_settings=_camel_dict(persona.chat_settings.model_dump()),
                    typing_speed_ms_per_char=scheduling.typing_speed_ms_per_char if scheduling else None,
                    response_rate=scheduling.response_rate if scheduling else None,
                    activity_level=scheduling.activity_level if scheduling else None,
                )
        return player

    def public_roster(self, room_id: str) -> list[PublicPlayer]:
        room = self.store.get(room_id)
        if room is None:
            return []
        return [self.to_public(p, room_id) for p in room.players.values()]


def _camel_dict(data: dict[str, Any]) -> dict[str, Any]:
    return {to_camel(key): value for key, value in data.items()}
