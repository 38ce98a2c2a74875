"""配置管理模块。

支持从 .env、config.yaml 以及环境变量加载配置，优先级：
初始化参数 > 环境变量 > .env > config.yaml > secrets 目录。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("CHAT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class ChatSettings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- 生成默认值 ----
    default_provider: str = Field(default="gpt-4", description="默认 provider id")
    default_max_tokens: int = Field(default=2048, ge=1, description="未指定 maxTokens 时的默认值")
    default_temperature: float = Field(
        default=0.7, ge=0.0, le=2.0, description="未指定 temperature 时的默认值"
    )

    # ---- 各厂商接口地址 ----
    openai_base_url: str = Field(default="https://api.openai.com/v1", description="OpenAI API 基础URL")
    anthropic_base_url: str = Field(
        default="https://api.anthropic.com/v1", description="Anthropic API 基础URL"
    )
    anthropic_version: str = Field(default="2023-06-01", description="anthropic-version 请求头")
    google_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        description="Google Generative Language API 基础URL",
    )
    groq_base_url: str = Field(
        default="https://api.groq.com/openai/v1", description="Groq (OpenAI 兼容) API 基础URL"
    )

    # ---- 服务端密钥：仅用于 provider 目录的 status 展示，不参与请求 ----
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API 密钥")
    anthropic_api_key: Optional[str] = Field(default=None, description="Anthropic API 密钥")
    google_ai_api_key: Optional[str] = Field(default=None, description="Google AI API 密钥")
    groq_api_key: Optional[str] = Field(default=None, description="Groq API 密钥")

    # ---- 超时 ----
    http_timeout: float = Field(default=30.0, ge=1.0, description="厂商 HTTP 超时时间（秒）")
    request_timeout: Optional[float] = Field(
        default=60.0,
        gt=0,
        description="编排层单次请求超时（秒），为空表示不限制",
    )

    # ---- 存储与日志 ----
    storage_root: str = Field(default=".storage", description="已保存会话的存储根目录")
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否截断日志内容")

    # ---- HTTP 服务 ----
    api_host: str = Field(default="127.0.0.1", description="API 监听地址")
    api_port: int = Field(default=8000, ge=1, le=65535, description="API 监听端口")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("openai_base_url", "anthropic_base_url", "google_base_url", "groq_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


settings = ChatSettings()

# 类型别名，让外部代码可以使用 Settings 类型
Settings = ChatSettings
