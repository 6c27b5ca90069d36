"""
Unit тесты для AppConfig.
"""

import os

import pytest
from pydantic import ValidationError

from cbo_bro.core.config import AppConfig


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in list(os.environ.keys()):
        if key.startswith("CBO_BRO__"):
            monkeypatch.delenv(key, raising=False)


def test_config_defaults():
    config = AppConfig(_env_file=None)

    assert config.port == 8082
    assert config.llm_mode == "anthropic"
    assert config.session_timeout == 3600
    assert config.heartbeat_interval == 30.0
    assert config.telegram_reply_deadline == 18.0
    assert config.telegram_bot_token is None
    assert config.is_development
    assert str(config.whitelist_path).endswith("whitelist.json")


def test_config_from_env(monkeypatch):
    monkeypatch.setenv("CBO_BRO__ENVIRONMENT", "production")
    monkeypatch.setenv("CBO_BRO__LLM_MODE", "fake")
    monkeypatch.setenv("CBO_BRO__SESSION_TIMEOUT", "120")
    monkeypatch.setenv("CBO_BRO__LOG_LEVEL", "debug")
    monkeypatch.setenv("CBO_BRO__TELEGRAM_BOT_TOKEN", "123:abc")

    config = AppConfig(_env_file=None)

    assert config.is_production
    assert config.llm_mode == "fake"
    assert config.session_timeout == 120
    assert config.log_level == "DEBUG"
    assert config.telegram_bot_token == "123:abc"


def test_invalid_log_level(monkeypatch):
    monkeypatch.setenv("CBO_BRO__LOG_LEVEL", "LOUD")

    with pytest.raises(ValidationError):
        AppConfig(_env_file=None)


def test_invalid_llm_mode(monkeypatch):
    monkeypatch.setenv("CBO_BRO__LLM_MODE", "openai")

    with pytest.raises(ValidationError):
        AppConfig(_env_file=None)
