"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置，优先级从高到低：
构造参数 > 环境变量 > .env > config.yaml > secrets 目录。
"""

import os
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)


def _config_file() -> Optional[Path]:
    """定位 YAML 配置文件：显式指定优先，其次当前目录与项目根目录。"""
    explicit = os.getenv("CHAT_RELAY_CONFIG_FILE")
    if explicit:
        return Path(explicit).expanduser()
    candidates = [
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
    ]
    for path in candidates:
        if path.exists():
            return path
    return None


class Settings(BaseSettings):
    """Relay 与客户端共用的配置（使用 Pydantic）。"""

    # ---- 上游（Dify）相关配置 ----
    dify_api_key: Optional[str] = Field(default=None, description="Dify API 密钥，只保存在服务端")
    dify_base_url: str = Field(
        default="https://api.dify.ai/v1",
        description="Dify API 基础URL",
    )
    dify_user_prefix: str = Field(default="visitor", description="未携带 user 时生成的用户标识前缀")

    # ---- 开关 ----
    public_access: bool = Field(
        default=True,
        validation_alias=AliasChoices("dify_public_access", "public_access"),
        description="关闭后 Relay 对所有请求返回 403",
    )
    demo_mode: bool = Field(default=False, description="演示模式：不调用上游，返回固定文案")
    enable_fallback: bool = Field(default=False, description="上游失败时是否返回兜底回答")

    # ---- 超时 ----
    http_timeout: float = Field(default=60.0, ge=1.0, description="上游 HTTP 超时时间（秒）")
    stream_idle_timeout: float = Field(
        default=30.0,
        gt=0,
        description="流式读取时允许的最长无数据间隔（秒）",
    )

    # ---- 客户端 ----
    relay_url: str = Field(
        default="http://127.0.0.1:8000/api/chat",
        description="Stream Consumer 默认请求的 Relay 地址",
    )

    storage_root: str = Field(default=".storage", description="聊天记录存储根目录")
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")
    environment: str = Field(
        default="development",
        validation_alias=AliasChoices("app_env", "environment"),
        description="运行环境名称，仅用于健康检查展示",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("dify_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v or None

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        sources = [init_settings, env_settings, dotenv_settings]
        yaml_file = _config_file()
        if yaml_file is not None:
            sources.append(YamlConfigSettingsSource(settings_cls, yaml_file=yaml_file))
        sources.append(file_secret_settings)
        return tuple(sources)


settings = Settings()
