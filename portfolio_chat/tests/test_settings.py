import pytest
from pydantic import ValidationError

from portfolio_chat.config.settings import ChatSettings


ENV_KEYS = (
    "OPENAI_API_KEY",
    "OPENAI_MODEL",
    "OPENAI_BASE_URL",
    "CHAT_TEMPERATURE",
    "CHAT_MAX_TOKENS",
    "CHAT_TIMEOUT_MS",
    "CHAT_GUARDRAILS_ENABLED",
    "CHAT_CONFIG_FILE",
    "LOG_LEVEL",
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("CHAT_CONFIG_FILE", str(tmp_path / "missing.yaml"))
    return monkeypatch


def test_defaults(clean_env):
    s = ChatSettings(_env_file=None)
    assert s.openai_api_key is None
    assert not s.has_credential
    assert s.openai_model == "gpt-4o-mini"
    assert s.chat_temperature == 0.7
    assert s.chat_max_tokens == 4096
    assert s.chat_timeout_ms == 30000
    assert s.chat_guardrails_enabled is True


def test_environment_overrides(clean_env):
    clean_env.setenv("OPENAI_API_KEY", "sk-env-1234567890")
    clean_env.setenv("OPENAI_MODEL", "gpt-5-mini")
    clean_env.setenv("CHAT_TEMPERATURE", "0.2")
    clean_env.setenv("CHAT_TIMEOUT_MS", "5000")
    clean_env.setenv("LOG_LEVEL", "debug")
    s = ChatSettings(_env_file=None)
    assert s.has_credential
    assert s.openai_model == "gpt-5-mini"
    assert s.chat_temperature == 0.2
    assert s.chat_timeout_ms == 5000
    assert s.log_level == "DEBUG"


def test_blank_key_counts_as_missing(clean_env):
    clean_env.setenv("OPENAI_API_KEY", "   ")
    assert ChatSettings(_env_file=None).openai_api_key is None


def test_short_key_is_rejected(clean_env):
    clean_env.setenv("OPENAI_API_KEY", "short")
    with pytest.raises(ValidationError):
        ChatSettings(_env_file=None)


def test_yaml_config_is_lower_priority_than_env(clean_env, tmp_path):
    config = tmp_path / "chat.yaml"
    config.write_text("openai_model: gpt-4o\nchat_max_tokens: 1024\n", encoding="utf-8")
    clean_env.setenv("CHAT_CONFIG_FILE", str(config))
    clean_env.setenv("OPENAI_MODEL", "o3-mini")
    s = ChatSettings(_env_file=None)
    assert s.chat_max_tokens == 1024
    assert s.openai_model == "o3-mini"


def test_guardrails_can_be_disabled(clean_env):
    clean_env.setenv("CHAT_GUARDRAILS_ENABLED", "false")
    assert ChatSettings(_env_file=None).chat_guardrails_enabled is False
