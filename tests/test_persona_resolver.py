"""
tests.test_persona_resolver
~~~~~~~~~~~~~~~~~~~~~~~~~~~

PersonaResolver + 调度属性推导 + PersonaManager 加载单元测试。
"""
from __future__ import annotations

import random
from pathlib import Path

import pytest

from chatroom.core.errors import PersonaNotFoundError
from chatroom.core.persona import PersonaManager
from chatroom.services.persona_resolver import (
    PersonaResolver,
    derive_scheduling_attributes,
)
from tests.factories import make_persona, make_personas


# ── 调度属性 ──────────────────────────────────────────────────────────

class TestSchedulingAttributes:
    """测试打字速度、回复率、活跃度的推导。"""

    def test_fast_typist_band(self) -> None:
        persona = make_persona("Fast", traits=["calm"], typing_patterns="Fast and sloppy")
        for seed in range(20):
            attrs = derive_scheduling_attributes(persona, random.Random(seed))
            # 60–80 再加 ±10% 抖动
            assert 54.0 <= attrs.typing_speed_ms_per_char <= 88.0

    def test_default_speed_without_pattern(self) -> None:
        persona = make_persona("Plain", traits=["calm"])
        for seed in range(20):
            attrs = derive_scheduling_attributes(persona, random.Random(seed))
            assert 90.0 <= attrs.typing_speed_ms_per_char <= 110.0

    def test_impulsive_types_faster(self) -> None:
        persona = make_persona("Quick", traits=["impulsive"])
        for seed in range(20):
            attrs = derive_scheduling_attributes(persona, random.Random(seed))
            assert attrs.typing_speed_ms_per_char <= 100.0 * 0.85 * 1.1

    def test_reserved_traits_lower_rates(self) -> None:
        persona = make_persona("Shy", traits=["reserved"])
        for seed in range(20):
            attrs = derive_scheduling_attributes(persona, random.Random(seed))
            assert attrs.response_rate <= 0.65 * 1.1
            assert attrs.activity_level <= 0.65 * 1.1

    def test_social_traits_raise_rates(self) -> None:
        persona = make_persona("Loud", traits=["social"])
        for seed in range(20):
            attrs = derive_scheduling_attributes(persona, random.Random(seed))
            assert attrs.response_rate >= 0.95 * 0.9
            assert attrs.activity_level >= 0.95 * 0.9


# ── 解析与缓存 ────────────────────────────────────────────────────────

class TestPersonaResolver:
    """测试解析顺序与缓存行为。"""

    def test_static_match_is_shared_reference(self) -> None:
        manager = make_personas()
        resolver = PersonaResolver(manager, rng=random.Random(1))

        persona = resolver.resolve("ALEX", "ai_1")

        assert persona is manager.get_by_name("alex")
        assert resolver.scheduling_for("ai_1") is not None

    def test_cache_wins_over_name(self) -> None:
        """同一参与者 ID 再次解析时直接命中缓存，即使名字不同。"""
        resolver = PersonaResolver(make_personas(), rng=random.Random(1))
        first = resolver.resolve("alex", "ai_1")
        scheduling = resolver.scheduling_for("ai_1")

        again = resolver.resolve("maya", "ai_1")

        assert again is first
        assert resolver.scheduling_for("ai_1") is scheduling

    def test_dynamic_persona_blends_sources(self) -> None:
        manager = make_personas()
        resolver = PersonaResolver(manager, rng=random.Random(5))

        persona = resolver.resolve("CosmicOtter42", "ai_9")

        assert persona.name == "CosmicOtter42"
        assert persona.profile.startswith("I am CosmicOtter42, a unique individual")
        assert persona.profile.endswith("I'm a complex personality with traits from multiple personas.")
        assert persona.chat_settings.enabled
        all_traits = {t for p in manager.all() for t in p.personality.traits}
        assert len(persona.personality.traits) >= 2
        assert set(persona.personality.traits) <= all_traits
        assert len(persona.personality.traits) == len(set(persona.personality.traits))
        assert "strategy" in persona.game_settings.strategy

    def test_dynamic_persona_with_empty_catalogue(self) -> None:
        resolver = PersonaResolver(PersonaManager(), rng=random.Random(5))
        persona = resolver.resolve("Lonely", "ai_1")
        assert persona.profile.startswith("I am Lonely")

    def test_update_persona_does_not_touch_shared_config(self) -> None:
        manager = make_personas()
        resolver = PersonaResolver(manager, rng=random.Random(1))
        resolver.resolve("alex", "ai_1")

        updated = resolver.update_persona("ai_1", bio="changed")

        assert updated.bio == "changed"
        assert manager.get_by_name("alex").bio == "Alex bio"
        assert resolver.get_profile("ai_1") is updated

    def test_update_unknown_participant(self) -> None:
        resolver = PersonaResolver(make_personas())
        with pytest.raises(PersonaNotFoundError):
            resolver.update_persona("ai_missing", bio="x")

    def test_forget(self) -> None:
        resolver = PersonaResolver(make_personas())
        resolver.resolve("alex", "ai_1")
        resolver.forget("ai_1")

        assert "ai_1" not in resolver
        assert resolver.scheduling_for("ai_1") is None


# ── 角色包加载 ────────────────────────────────────────────────────────

class TestPersonaManager:
    """测试从目录加载 YAML 角色包。"""

    def test_load_all(self, tmp_path: Path) -> None:
        good = tmp_path / "nova"
        good.mkdir()
        (good / "config.yaml").write_text(
            "name: Nova\n"
            "username: nova\n"
            "profile: I am Nova, a journalist.\n"
            "chat_settings:\n"
            "  enabled: true\n"
            "  auto_invite: false\n"
            "  web_search: true\n",
            encoding="utf-8",
        )
        broken = tmp_path / "broken"
        broken.mkdir()
        (broken / "config.yaml").write_text("profile: missing name\n", encoding="utf-8")
        (tmp_path / "empty_dir").mkdir()

        manager = PersonaManager()
        count = manager.load_all(tmp_path)

        assert count == 1
        nova = manager.get_by_name("NOVA")
        assert nova.chat_settings.web_search is True
        assert manager.auto_invitable() == []
        assert manager.usernames() == ["nova"]

    def test_missing_directory(self, tmp_path: Path) -> None:
        manager = PersonaManager()
        assert manager.load_all(tmp_path / "nope") == 0

    def test_bundled_personas_load(self) -> None:
        """仓库自带的角色包应全部可解析。"""
        from chatroom.core.config import PROJECT_ROOT

        manager = PersonaManager()
        count = manager.load_all(PROJECT_ROOT / "data" / "personas")

        assert count >= 5
        assert manager.auto_invitable()
        assert any(not p.chat_settings.enabled for p in manager.all())
