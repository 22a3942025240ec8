"""
chatroom.core.config
~~~~~~~~~~~~~~~~~~~~

集中式配置管理，基于 pydantic-settings 自动从 ``.env`` 文件加载。

支持多环境配置（dev / test / prod），加载顺序为:
  1. 环境变量（最高优先级）
  2. ``.env.{ENVIRONMENT}`` 环境专属文件
  3. ``.env`` 基础文件
  4. 字段默认值（最低优先级）

所有时长字段单位均为秒。
"""
from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# 项目根目录（chatroom/core/config.py 向上三级）
PROJECT_ROOT: Path = Path(__file__).resolve().parents[2]

# 读取当前环境标识（在 Settings 类定义之前，用于决定加载哪个 .env 文件）
_CURRENT_ENV: str = os.getenv("ENVIRONMENT", "dev")


class Settings(BaseSettings):
    """全局配置对象，字段值按如下优先级加载：环境变量 > .env.{env} > .env > 默认值。"""

    # ── 基础 ──────────────────────────────────────────────────────────
    PROJECT_NAME: str = Field(default="AI Chatroom Server", description="项目名称")
    VERSION: str = Field(default="0.1.0", description="版本号")
    ENVIRONMENT: Literal["dev", "test", "prod"] = Field(
        default="dev",
        description="运行环境：dev / test / prod",
    )

    # ── LLM ───────────────────────────────────────────────────────────
    GEMINI_API_KEY: str = Field(default="", description="Google Gemini API Key（none 模式下可为空）")
    DEFAULT_MODEL: str = Field(
        default="gemini-2.5-flash",
        description="聊天模型名称；设为 none 时使用本地预置回复（调试模式）",
    )
    LLM_TEMPERATURE: float = Field(default=0.85, description="默认采样温度")
    LLM_MAX_TOKENS: int = Field(default=200, description="单次回复最大 token 数")

    # ── 角色数据 ──────────────────────────────────────────────────────
    PERSONA_DIR: str = Field(
        default="data/personas",
        description="角色包目录（相对项目根目录）",
    )

    # ── 房间 ──────────────────────────────────────────────────────────
    DEFAULT_ROOM: str = Field(default="chat_general", description="未指定房间时加入的默认频道")
    ALWAYS_ON_ROOMS: list[str] = Field(
        default=["chat_gaming", "chat_general", "chat_music", "chat_philosophy"],
        description="常驻频道，不参与不活跃清理",
    )
    MAX_AI_PLAYERS_IN_CHAT: int = Field(default=10, description="单个房间内 AI 参与者上限")
    MAX_CHAT_ROOM_TOTAL_PLAYERS: int = Field(default=25, description="/invite 时房间总人数上限")
    MAX_HISTORY_MESSAGES: int = Field(default=15, description="每个房间保留的历史消息条数")
    INITIAL_AI_MIN: int = Field(default=3, description="新房间初始 AI 数量下限")
    INITIAL_AI_MAX: int = Field(default=5, description="新房间初始 AI 数量上限")
    SUBSCRIPTION_DEBOUNCE_SECONDS: float = Field(
        default=2.0, description="同一连接重复订阅同一频道的防抖窗口",
    )

    # ── 不活跃清理 ────────────────────────────────────────────────────
    INACTIVITY_TIMEOUT_SECONDS: float = Field(default=120.0, description="无人类活动多久后关闭房间")
    INACTIVITY_CHECK_INTERVAL: float = Field(default=30.0, description="清理扫描间隔")
    ROOM_CLOSE_GRACE_SECONDS: float = Field(
        default=0.5, description="关闭房间后延迟删除的时间（留给断开帧发送）",
    )
    ROOM_STATS_INTERVAL: float = Field(default=60.0, description="房间统计日志间隔")

    # ── AI 对话调度 ───────────────────────────────────────────────────
    AI_CHAT_PROBABILITY: float = Field(default=0.85, description="AI 接话概率")
    MIN_AI_CHAT_INTERVAL: float = Field(default=5.0, description="AI 主动接话最小间隔")
    MAX_AI_RESPONSES_PER_CHAIN: int = Field(default=6, description="单条 AI 对话链最大长度")
    AI_TYPING_DELAY_MIN: float = Field(default=0.8, description="回复人类前的模拟打字延迟下限")
    AI_TYPING_DELAY_MAX: float = Field(default=2.0, description="回复人类前的模拟打字延迟上限")
    AI_CHAIN_DELAY_MIN: float = Field(default=2.0, description="AI 之间接话延迟下限")
    AI_CHAIN_DELAY_MAX: float = Field(default=5.0, description="AI 之间接话延迟上限")
    PLAYGROUND_TYPING_DELAY_MIN: float = Field(default=0.5, description="Playground 回复延迟下限")
    PLAYGROUND_TYPING_DELAY_MAX: float = Field(default=1.5, description="Playground 回复延迟上限")
    AI_AMBIENT_CHAT_MIN_INTERVAL: float = Field(default=120.0, description="环境闲聊检查间隔下限")
    AI_AMBIENT_CHAT_MAX_INTERVAL: float = Field(default=300.0, description="环境闲聊检查间隔上限")
    AI_AMBIENT_CHAT_PROBABILITY: float = Field(default=0.5, description="每次检查触发环境闲聊的概率")

    # ── 用户名 ────────────────────────────────────────────────────────
    USERNAME_MAX_LENGTH: int = Field(default=20, description="用户名最大长度")

    # ── 服务 ──────────────────────────────────────────────────────────
    HOST: str = Field(default="0.0.0.0", description="服务监听地址")
    PORT: int = Field(default=8000, description="服务监听端口")
    LOG_LEVEL: str = Field(default="INFO", description="日志级别（可被环境属性覆盖）")

    # ── Pydantic Settings ─────────────────────────────────────────────
    # 先加载 .env.{env} 再加载 .env，前者优先级更高
    model_config = SettingsConfigDict(
        env_file=(f".env.{_CURRENT_ENV}", ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── 环境判断 ──────────────────────────────────────────────────────

    @property
    def is_prod(self) -> bool:
        """当前是否为生产环境。"""
        return self.ENVIRONMENT == "prod"

    @property
    def is_test(self) -> bool:
        """当前是否为测试环境。"""
        return self.ENVIRONMENT == "test"

    @property
    def is_dev(self) -> bool:
        """当前是否为开发环境。"""
        return self.ENVIRONMENT == "dev"

    # ── 环境差异化行为 ────────────────────────────────────────────────

    @property
    def debug(self) -> bool:
        """是否开启 debug 模式。仅 dev 环境开启。"""
        return self.is_dev

    @property
    def reload(self) -> bool:
        """是否开启热重载。仅 dev 环境开启。"""
        return self.is_dev

    @property
    def effective_log_level(self) -> str:
        """根据环境自动推断日志级别。

        - dev  → INFO
        - test → DEBUG（方便排查测试失败）
        - prod → WARNING（减少噪音）

        如果环境变量中显式设置了 LOG_LEVEL，会覆盖此默认推断。
        """
        env_log = os.getenv("LOG_LEVEL")
        if env_log:
            return env_log
        return {
            "dev": "INFO",
            "test": "DEBUG",
            "prod": "WARNING",
        }.get(self.ENVIRONMENT, "INFO")

    @property
    def allow_cors_all_origins(self) -> bool:
        """是否允许所有 CORS 来源。非 prod 环境允许，方便本地调试。"""
        return not self.is_prod

    @property
    def persona_path(self) -> Path:
        """角色包目录的绝对路径。"""
        path = Path(self.PERSONA_DIR)
        return path if path.is_absolute() else PROJECT_ROOT / path

    @property
    def is_model_disabled(self) -> bool:
        """是否处于无模型调试模式（使用预置回复）。"""
        return self.DEFAULT_MODEL.lower() == "none"


@lru_cache
def get_settings() -> Settings:
    """获取全局 Settings 单例（带缓存，避免重复解析 .env）。"""
    return Settings()


settings: Settings = get_settings()
