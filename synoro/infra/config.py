from __future__ import annotations

import logging
import os
from dataclasses import dataclass

LOGGER = logging.getLogger(__name__)

DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MOONSHOT_BASE_URL = "https://api.moonshot.ai/v1"
DEFAULT_OPENAI_ADVICE_MODEL = "gpt-4o-mini"
DEFAULT_MOONSHOT_ADVICE_MODEL = "kimi-k2-0711-preview"
DEFAULT_LANGFUSE_BASEURL = "https://cloud.langfuse.com"

_PROVIDERS = {"openai", "moonshot"}


@dataclass(frozen=True)
class Settings:
    bot_token: str
    ai_provider: str
    openai_api_key: str | None
    openai_base_url: str
    openai_advice_model: str
    moonshot_api_key: str | None
    moonshot_base_url: str
    moonshot_advice_model: str
    llm_timeout_seconds: float
    langfuse_public_key: str | None
    langfuse_secret_key: str | None
    langfuse_base_url: str
    tg_message_max_length: int
    force_agent_mode: bool
    env: str

    @property
    def advice_model(self) -> str:
        if self.ai_provider == "moonshot":
            return self.moonshot_advice_model
        return self.openai_advice_model

    @property
    def active_api_key(self) -> str | None:
        if self.ai_provider == "moonshot":
            return self.moonshot_api_key
        return self.openai_api_key

    @property
    def langfuse_configured(self) -> bool:
        return bool(self.langfuse_public_key and self.langfuse_secret_key)


@dataclass(frozen=True)
class StartupFeatures:
    llm_enabled: bool
    prompt_store_enabled: bool


_DEV_ENVS = {"dev", "development", "local"}


def resolve_env_label(raw_env: dict[str, str] | None = None) -> str:
    source = raw_env if raw_env is not None else os.environ
    env = source.get("APP_ENV", "prod").strip().lower()
    return "dev" if env in _DEV_ENVS else "prod"


def resolve_provider(value: str | None) -> str:
    provider = (value or "openai").strip().lower()
    if provider not in _PROVIDERS:
        LOGGER.warning("Unknown AI_PROVIDER=%s; using openai", provider)
        return "openai"
    return provider


def validate_startup_env(
    settings: Settings,
    *,
    logger: logging.Logger | None = None,
) -> StartupFeatures:
    log = logger or LOGGER
    if not settings.bot_token:
        log.error("startup.env invalid: BOT_TOKEN missing")
        raise SystemExit("BOT_TOKEN is not set")

    llm_enabled = bool(settings.active_api_key)
    if not llm_enabled:
        log.warning(
            "startup.env llm disabled: no API key configured for provider=%s",
            settings.ai_provider,
        )
    if not settings.langfuse_configured:
        log.info("startup.env prompt store disabled: using local prompt registry")

    return StartupFeatures(
        llm_enabled=llm_enabled,
        prompt_store_enabled=settings.langfuse_configured,
    )


def load_settings(raw_env: dict[str, str] | None = None) -> Settings:
    if raw_env is None:
        _load_dotenv()
    env = raw_env if raw_env is not None else os.environ

    return Settings(
        bot_token=env.get("BOT_TOKEN") or env.get("TELEGRAM_BOT_TOKEN") or "",
        ai_provider=resolve_provider(env.get("AI_PROVIDER")),
        openai_api_key=env.get("OPENAI_API_KEY") or None,
        openai_base_url=env.get("OPENAI_BASE_URL", DEFAULT_OPENAI_BASE_URL),
        openai_advice_model=env.get("OPENAI_ADVICE_MODEL") or DEFAULT_OPENAI_ADVICE_MODEL,
        moonshot_api_key=env.get("MOONSHOT_API_KEY") or None,
        moonshot_base_url=env.get("MOONSHOT_BASE_URL", DEFAULT_MOONSHOT_BASE_URL),
        moonshot_advice_model=env.get("MOONSHOT_ADVICE_MODEL") or DEFAULT_MOONSHOT_ADVICE_MODEL,
        llm_timeout_seconds=_parse_optional_float(env.get("LLM_TIMEOUT_SECONDS"), 30.0),
        langfuse_public_key=env.get("LANGFUSE_PUBLIC_KEY") or None,
        langfuse_secret_key=env.get("LANGFUSE_SECRET_KEY") or None,
        langfuse_base_url=env.get("LANGFUSE_BASEURL") or DEFAULT_LANGFUSE_BASEURL,
        tg_message_max_length=_parse_int_with_default(env.get("TG_MESSAGE_MAX_LENGTH"), 3000),
        force_agent_mode=_parse_optional_bool(env.get("FORCE_AGENT_MODE")) is True,
        env=resolve_env_label(dict(env)),
    )


def _load_dotenv() -> None:
    from dotenv import load_dotenv

    load_dotenv()


def _parse_optional_float(value: str | None, default: float) -> float:
    if value is None:
        return default
    trimmed = value.strip()
    if not trimmed:
        return default
    return float(trimmed)


def _parse_optional_bool(value: str | None) -> bool | None:
    if value is None:
        return None
    trimmed = value.strip().lower()
    if not trimmed:
        return None
    return trimmed in {"1", "true", "yes", "on"}


def _parse_int_with_default(value: str | None, default: int) -> int:
    if value is None:
        return default
    trimmed = value.strip()
    if not trimmed:
        return default
    return int(trimmed)
