"""
chatroom.core.persona
~~~~~~~~~~~~~~~~~~~~~

静态角色包（Persona Bundle）的解析与管理器。

每个角色位于 ``data/personas/<persona_id>/config.yaml``，启动时加载一次，
此后只读，所有房间通过引用共享同一份配置。
"""
from __future__ import annotations

from pathlib import Path
from typing import Iterable

import yaml
from pydantic import BaseModel, Field

from chatroom.core.logging import get_logger

logger = get_logger(__name__)


class PersonalityConfig(BaseModel):
    traits: list[str] = Field(default_factory=list, description="性格特征关键词")
    communication_style: str = Field(default="", description="说话风格")
    interests: list[str] = Field(default_factory=list, description="兴趣")
    background: str = Field(default="", description="背景故事")
    typing_patterns: str = Field(default="", description="打字习惯（影响打字速度）")
    common_phrases: list[str] = Field(default_factory=list, description="口头禅")
    emoji_usage: str = Field(default="", description="表情使用习惯")


class ChatSettings(BaseModel):
    enabled: bool = Field(default=False, description="是否允许出现在普通聊天频道")
    auto_invite: bool = Field(default=False, description="新频道创建时是否可被自动邀请")
    web_search: bool = Field(default=False, description="生成回复时是否启用联网搜索")


class GameSettings(BaseModel):
    enabled: bool = False
    auto_invite: bool = False
    strategy: str = ""


class PersonaTemplates(BaseModel):
    chat: str | None = Field(default=None, description="自定义聊天 Prompt 模板（str.format 风格）")
    starter: str | None = Field(default=None, description="自定义开场 Prompt 模板")


class PersonaConfig(BaseModel):
    """一个角色的完整描述。字段集合是封闭的，核心逻辑只读取这些字段。"""

    name: str = Field(..., description="角色显示名称")
    username: str = Field(default="", description="聊天中使用的用户名，默认取 name 的小写")
    bio: str | None = Field(default=None, description="简短自我介绍")
    profile: str = Field(default="", description="第一人称的角色设定")
    personality: PersonalityConfig = Field(default_factory=PersonalityConfig)
    game_settings: GameSettings = Field(default_factory=GameSettings)
    chat_settings: ChatSettings = Field(default_factory=ChatSettings)
    templates: PersonaTemplates = Field(default_factory=PersonaTemplates)

    @property
    def handle(self) -> str:
        """角色在房间内使用的名字（username 优先）。"""
        return self.username or self.name.lower()


class PersonaManager:
    """加载并维护所有静态角色（只读目录）。"""

    def __init__(self, personas: Iterable[PersonaConfig] | None = None) -> None:
        self._personas: dict[str, PersonaConfig] = {}
        for persona in personas or []:
            self.register(persona)

    def register(self, persona: PersonaConfig, persona_id: str | None = None) -> None:
        """登记一个角色。"""
        self._personas[persona_id or persona.handle] = persona

    def load_all(self, persona_dir: Path) -> int:
        """扫描角色目录并加载所有有效角色，返回加载数量。"""
        if not persona_dir.exists():
            logger.warning("Persona 目录不存在: %s", persona_dir)
            return 0

        for p_dir in sorted(persona_dir.iterdir()):
            config_path = p_dir / "config.yaml"
            if not (p_dir.is_dir() and config_path.exists()):
                continue
            try:
                persona = self._load_persona(config_path)
            except Exception as e:
                logger.error("加载角色包 %s 失败: %s", p_dir.name, e, exc_info=True)
                continue
            self.register(persona, persona_id=p_dir.name)
            logger.info("成功加载角色包: %s (%s)", p_dir.name, persona.name)
        return len(self._personas)

    @staticmethod
    def _load_persona(config_path: Path) -> PersonaConfig:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return PersonaConfig(**data)

    def get_by_name(self, name_or_username: str) -> PersonaConfig | None:
        """按名称或用户名查找角色（大小写不敏感）。"""
        term = name_or_username.strip().lower()
        if not term:
            return None
        for persona in self._personas.values():
            if persona.name.lower() == term or persona.handle.lower() == term:
                return persona
        return None

    def all(self) -> list[PersonaConfig]:
        """按名称排序的全部角色。"""
        return sorted(self._personas.values(), key=lambda p: p.name.lower())

    def auto_invitable(self) -> list[PersonaConfig]:
        """可被新频道自动邀请的角色。"""
        return [p for p in self.all() if p.chat_settings.auto_invite]

    def usernames(self) -> list[str]:
        """所有角色用户名（小写），启动时预登记到全局用户名集合。"""
        return [p.handle.lower() for p in self.all()]

    def __len__(self) -> int:
        return len(self._personas)
