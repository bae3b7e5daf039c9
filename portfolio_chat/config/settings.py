"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置。
Completion 凭据（OPENAI_API_KEY）是唯一的必填项，其余字段都有默认值。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_WELCOME_MESSAGE = (
    "Hi! I'm here to answer questions about my professional experience, "
    "projects, and technical decisions. What would you like to know?"
)


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

    # ---- Completion endpoint ----
    openai_api_key: Optional[str] = Field(default=None, description="Completion API 密钥")
    openai_model: str = Field(default="gpt-4o-mini", description="模型 ID")
    openai_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="chat/completions 所在的 API 基础URL",
    )
    chat_temperature: float = Field(default=0.7, ge=0.0, le=2.0, description="生成温度")
    chat_max_tokens: int = Field(default=4096, ge=1, description="单次回答的 token 上限")
    chat_timeout_ms: int = Field(default=30000, ge=1000, description="请求超时时间（毫秒）")
    chat_guardrails_enabled: bool = Field(default=True, description="是否在调用模型前检查访客输入")

    # ---- 会话与存储 ----
    storage_root: str = Field(default=".storage", description="会话存储根目录")
    welcome_message: str = Field(default=DEFAULT_WELCOME_MESSAGE, description="首次打开时的欢迎语")
    system_prompt_path: Optional[str] = Field(default=None, description="自定义 system prompt 模板路径")

    # ---- 日志 ----
    log_dir: str = Field(default="logs", description="日志目录")
    log_level: str = Field(default="INFO", description="日志级别")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("openai_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper()

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

    @property
    def has_credential(self) -> bool:
        return bool(self.openai_api_key)


settings = ChatSettings()

# 类型别名，让外部代码可以使用 Settings 类型
Settings = ChatSettings
