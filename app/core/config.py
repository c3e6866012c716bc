"""
app.core.config
~~~~~~~~~~~~~~~

服务配置，基于 pydantic-settings。

字段取值优先级：环境变量 > ``.env.{ENVIRONMENT}`` > ``.env`` > 默认值。
实时通道相关的参数（心跳间隔、消息限流、在线状态房间）都集中在这里，
``ChatHub`` 构造时读取一次。
"""
from __future__ import annotations

import os
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# 决定加载哪个 .env 文件，必须在 Settings 定义之前读取
_CURRENT_ENV: str = os.getenv("ENVIRONMENT", "dev")

# 未显式设置 LOG_LEVEL 时按环境推断
_DEFAULT_LOG_LEVELS: dict[str, str] = {"dev": "INFO", "test": "DEBUG", "prod": "WARNING"}


class Settings(BaseSettings):
    """聊天服务配置。"""

    model_config = SettingsConfigDict(
        env_file=(f".env.{_CURRENT_ENV}", ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    PROJECT_NAME: str = Field(default="Chat Presence Hub")
    VERSION: str = Field(default="0.1.0")
    ENVIRONMENT: Literal["dev", "test", "prod"] = Field(default="dev", description="运行环境")

    # ── MongoDB ───────────────────────────────────────────────────────
    MONGO_URI: str = Field(default="mongodb://localhost:27017", description="MongoDB 连接串")
    MONGO_DB_NAME: str = Field(default="chat")

    # ── 实时通道 ──────────────────────────────────────────────────────
    WS_PATH: str = Field(default="/ws", description="WebSocket 端点路径")
    PRESENCE_ROOM_ID: str = Field(
        default="home",
        description="全局在线状态房间（不落库，不广播成员进出）",
    )
    HEARTBEAT_INTERVAL: float = Field(
        default=30.0,
        gt=0,
        description="心跳巡检间隔（秒）；连续两轮未回应的连接被淘汰",
    )
    WS_MESSAGE_INTERVAL: float = Field(
        default=0.2,
        ge=0,
        description="同一连接两条聊天消息的最小间隔（秒），0 表示不限流",
    )
    HISTORY_LIMIT: int = Field(default=50, ge=1, description="joined / list 携带的历史条数")

    # ── HTTP ──────────────────────────────────────────────────────────
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8000)
    CORS_ORIGINS: list[str] = Field(
        default_factory=list,
        description="prod 环境允许的跨域来源；非 prod 环境放开全部来源",
    )
    LOG_LEVEL: str | None = Field(default=None, description="显式日志级别，为空时按环境推断")

    @field_validator("PRESENCE_ROOM_ID")
    @classmethod
    def _presence_room_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("PRESENCE_ROOM_ID must not be empty")
        return value

    @property
    def is_prod(self) -> bool:
        return self.ENVIRONMENT == "prod"

    @property
    def is_test(self) -> bool:
        return self.ENVIRONMENT == "test"

    @property
    def is_dev(self) -> bool:
        return self.ENVIRONMENT == "dev"

    @property
    def debug(self) -> bool:
        """仅 dev 环境开启 debug 与热重载。"""
        return self.is_dev

    @property
    def reload(self) -> bool:
        return self.is_dev

    @property
    def effective_log_level(self) -> str:
        """实际生效的日志级别：dev → INFO，test → DEBUG，prod → WARNING。"""
        if self.LOG_LEVEL:
            return self.LOG_LEVEL.upper()
        return _DEFAULT_LOG_LEVELS.get(self.ENVIRONMENT, "INFO")

    @property
    def allow_cors_all_origins(self) -> bool:
        return not self.is_prod


@lru_cache
def get_settings() -> Settings:
    """进程内唯一的 Settings（缓存，避免重复解析 .env）。"""
    return Settings()


settings: Settings = get_settings()
