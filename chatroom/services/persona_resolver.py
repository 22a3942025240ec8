"""
chatroom.services.persona_resolver
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

AI 参与者 → 行为画像的解析与缓存。

解析顺序：
  1. 按参与者 ID 命中缓存，直接返回（画像一旦生成，整个参与者生命周期内不变）
  2. 按名字匹配静态角色（大小写不敏感），缓存的是同一份对象的引用
  3. 否则从 2–4 个静态角色中混合生成一个动态画像

首次解析时同时计算该参与者的调度属性（打字速度、回复率、活跃度），
抖动只在这一刻施加一次。
"""
from __future__ import annotations

import random

from pydantic import BaseModel

from chatroom.core.errors import PersonaNotFoundError
from chatroom.core.logging import get_logger
from chatroom.core.persona import (
    ChatSettings,
    GameSettings,
    PersonaConfig,
    PersonalityConfig,
    PersonaManager,
)

logger = get_logger(__name__)

DEFAULT_TYPING_SPEED: float = 100.0
BASELINE_RATE: float = 0.8
HIGH_RATE: float = 0.95
LOW_RATE: float = 0.65

# 打字习惯关键词 → 基础速度区间（毫秒/字符），按顺序匹配第一个
_TYPING_BANDS: tuple[tuple[str, float, float], ...] = (
    ("fast", 60.0, 80.0),
    ("slow", 130.0, 170.0),
    ("moderate", 80.0, 110.0),
    ("erratic", 70.0, 140.0),
    ("careful", 110.0, 140.0),
)

_OUTGOING_TRAITS = frozenset({"social", "outgoing", "enthusiastic"})
_ENERGETIC_TRAITS = frozenset({"energetic", "enthusiastic", "social"})
_RESERVED_TRAITS = frozenset({"reserved", "introverted", "analytical"})


class SchedulingAttributes(BaseModel):
    """AI 参与者的调度属性，生成后在其会话内保持不变。"""

    typing_speed_ms_per_char: float
    response_rate: float
    activity_level: float


def _jitter(value: float, rng: random.Random) -> float:
    # ±10%
    return value * (0.9 + rng.random() * 0.2)


def derive_scheduling_attributes(
    persona: PersonaConfig, rng: random.Random | None = None,
) -> SchedulingAttributes:
    """根据角色的打字习惯和性格特征计算调度属性。

    打字速度：按 ``typing_patterns`` 关键词选取基础区间；
    ``meticulous``/``perfectionist`` 慢 5%，``impulsive``/``energetic`` 快 15%，
    多条规则命中时相乘叠加。回复率和活跃度默认 0.8，
    外向类特征提升到 0.95，内敛类特征降到 0.65。三项各自施加 ±10% 抖动。
    """
    rng = rng or random
    personality = persona.personality
    traits = {t.lower() for t in personality.traits}

    speed = DEFAULT_TYPING_SPEED
    patterns = personality.typing_patterns.lower()
    for keyword, low, high in _TYPING_BANDS:
        if keyword in patterns:
            speed = low + rng.random() * (high - low)
            break
    if traits & {"meticulous", "perfectionist"}:
        speed *= 1.05
    if traits & {"impulsive", "energetic"}:
        speed *= 0.85

    response_rate = BASELINE_RATE
    if traits & _OUTGOING_TRAITS:
        response_rate = HIGH_RATE
    elif traits & _RESERVED_TRAITS:
        response_rate = LOW_RATE

    activity_level = BASELINE_RATE
    if traits & _ENERGETIC_TRAITS:
        activity_level = HIGH_RATE
    elif traits & _RESERVED_TRAITS:
        activity_level = LOW_RATE

    return SchedulingAttributes(
        typing_speed_ms_per_char=_jitter(speed, rng),
        response_rate=_jitter(response_rate, rng),
        activity_level=_jitter(activity_level, rng),
    )


def _union(groups: list[list[str]]) -> list[str]:
    """按出现顺序合并去重。"""
    return list(dict.fromkeys(item for group in groups for item in group))


def _profile_snippet(base: PersonaConfig) -> str:
    """从基础角色的 ``I am <name>, ... . I'm ...`` 式设定中截取描述片段。"""
    prefix = f"I am {base.name}, "
    profile = base.profile.strip()
    if profile.startswith(prefix):
        return profile[len(prefix):].split(". I'm")[0].rstrip(".")
    return profile.split(". ")[0].rstrip(".")


class PersonaResolver:
    """按参与者 ID 缓存行为画像。

    Attributes:
        manager: 静态角色管理器（只读）。
    """

    def __init__(self, manager: PersonaManager, rng: random.Random | None = None) -> None:
        self.manager = manager
        self._rng = rng or random.Random()
        self._profiles: dict[str, PersonaConfig] = {}
        self._scheduling: dict[str, SchedulingAttributes] = {}

    def resolve(self, name: str, participant_id: str) -> PersonaConfig:
        """获取（必要时创建并缓存）参与者的行为画像。"""
        cached = self._profiles.get(participant_id)
        if cached is not None:
            return cached

        persona = self.manager.get_by_name(name)
        if persona is None:
            persona = self.create_dynamic_persona(name)
            logger.info("生成动态画像 | name=%s | id=%s", name, participant_id)

        self._profiles[participant_id] = persona
        self._scheduling[participant_id] = derive_scheduling_attributes(persona, self._rng)
        return persona

    def create_dynamic_persona(self, name: str) -> PersonaConfig:
        """从 2–4 个随机静态角色混合出一个新画像。"""
        catalogue = self.manager.all()
        count = min(self._rng.randint(2, 4), len(catalogue))
        sources = self._rng.sample(catalogue, count)
        if not sources:
            return PersonaConfig(
                name=name,
                profile=f"I am {name}, a unique individual with a blend of characteristics.",
                chat_settings=ChatSettings(enabled=True, auto_invite=True),
            )

        def pick(attr: str) -> str:
            return getattr(self._rng.choice(sources).personality, attr)

        personalities = [s.personality for s in sources]
        personality = PersonalityConfig(
            traits=_union([p.traits for p in personalities]),
            communication_style=pick("communication_style"),
            interests=_union([p.interests for p in personalities]),
            background=pick("background"),
            typing_patterns=pick("typing_patterns"),
            common_phrases=_union([p.common_phrases for p in personalities]),
            emoji_usage=pick("emoji_usage"),
        )
        snippet = _profile_snippet(sources[0])
        profile = f"I am {name}, a unique individual with a blend of characteristics."
        if snippet:
            profile += f" {snippet}."
        profile += " I'm a complex personality with traits from multiple personas."

        strategies = [s.game_settings.strategy for s in sources if s.game_settings.strategy]
        return PersonaConfig(
            name=name,
            profile=profile,
            personality=personality,
            game_settings=GameSettings(
                enabled=True, auto_invite=True, strategy=" Additionally, ".join(strategies),
            ),
            chat_settings=ChatSettings(enabled=True, auto_invite=True),
        )

    def get_profile(self, participant_id: str) -> PersonaConfig | None:
        return self._profiles.get(participant_id)

    def scheduling_for(self, participant_id: str) -> SchedulingAttributes | None:
        return self._scheduling.get(participant_id)

    def update_persona(self, participant_id: str, **fields) -> PersonaConfig:
        """只修改该参与者的画像副本，不影响共享的静态角色。"""
        persona = self._profiles.get(participant_id)
        if persona is None:
            raise PersonaNotFoundError(f"No persona cached for participant {participant_id}")
        updated = persona.model_copy(update=fields)
        self._profiles[participant_id] = updated
        return updated

    def forget(self, participant_id: str) -> None:
        """AI 离开房间后清理其缓存。"""
        self._profiles.pop(participant_id, None)
        self._scheduling.pop(participant_id, None)

    def __contains__(self, participant_id: object) -> bool:
        return participant_id in self._profiles
