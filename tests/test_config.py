from __future__ import annotations

import logging

import pytest

from synoro.infra.config import load_settings, resolve_env_label, resolve_provider, validate_startup_env


def test_defaults_from_minimal_env() -> None:
    settings = load_settings({"BOT_TOKEN": "123:abc"})

    assert settings.bot_token == "123:abc"
    assert settings.ai_provider == "openai"
    assert settings.advice_model == "gpt-4o-mini"
    assert settings.openai_base_url == "https://api.openai.com/v1"
    assert settings.llm_timeout_seconds == 30.0
    assert settings.tg_message_max_length == 3000
    assert settings.force_agent_mode is False
    assert settings.langfuse_configured is False
    assert settings.env == "prod"


def test_telegram_bot_token_fallback() -> None:
    assert load_settings({"TELEGRAM_BOT_TOKEN": "t"}).bot_token == "t"


def test_moonshot_provider_selects_its_model_and_key() -> None:
    settings = load_settings(
        {
            "BOT_TOKEN": "t",
            "AI_PROVIDER": " Moonshot ",
            "MOONSHOT_API_KEY": "ms-key",
            "MOONSHOT_ADVICE_MODEL": "kimi-latest",
            "OPENAI_API_KEY": "sk-key",
        }
    )

    assert settings.ai_provider == "moonshot"
    assert settings.advice_model == "kimi-latest"
    assert settings.active_api_key == "ms-key"
    assert settings.moonshot_base_url == "https://api.moonshot.ai/v1"


def test_unknown_provider_falls_back_to_openai() -> None:
    assert resolve_provider("anthropic") == "openai"
    assert resolve_provider(None) == "openai"


def test_parsed_values() -> None:
    settings = load_settings(
        {
            "BOT_TOKEN": "t",
            "LLM_TIMEOUT_SECONDS": "12.5",
            "TG_MESSAGE_MAX_LENGTH": " 2000 ",
            "FORCE_AGENT_MODE": "yes",
            "LANGFUSE_PUBLIC_KEY": "pk",
            "LANGFUSE_SECRET_KEY": "sk",
            "LANGFUSE_BASEURL": "https://langfuse.local",
            "APP_ENV": "development",
        }
    )

    assert settings.llm_timeout_seconds == 12.5
    assert settings.tg_message_max_length == 2000
    assert settings.force_agent_mode is True
    assert settings.langfuse_configured is True
    assert settings.langfuse_base_url == "https://langfuse.local"
    assert settings.env == "dev"


def test_invalid_number_raises() -> None:
    with pytest.raises(ValueError):
        load_settings({"BOT_TOKEN": "t", "TG_MESSAGE_MAX_LENGTH": "many"})


def test_resolve_env_label() -> None:
    assert resolve_env_label({"APP_ENV": "LOCAL"}) == "dev"
    assert resolve_env_label({"APP_ENV": "staging"}) == "prod"
    assert resolve_env_label({}) == "prod"


def test_validate_startup_env_requires_bot_token() -> None:
    with pytest.raises(SystemExit):
        validate_startup_env(load_settings({}))


def test_validate_startup_env_reports_features(caplog) -> None:
    caplog.set_level(logging.INFO, logger="test.startup")
    settings = load_settings({"BOT_TOKEN": "t"})

    features = validate_startup_env(settings, logger=logging.getLogger("test.startup"))

    assert features.llm_enabled is False
    assert features.prompt_store_enabled is False
    assert "llm disabled" in caplog.text
