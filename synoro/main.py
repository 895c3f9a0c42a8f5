from __future__ import annotations

import logging
from typing import Any

from telegram.ext import Application, CommandHandler, MessageHandler, filters

from synoro.bot import handlers
from synoro.core.advisor import Advisor
from synoro.core.agent_processor import AgentMessageProcessor, ProcessingOptions
from synoro.core.agents import BasicAgentManager
from synoro.core.classifier import Classifier
from synoro.core.generation import TextGenerator, build_text_generator
from synoro.core.message_processor import LegacyMessageProcessor
from synoro.core.parser import TaskParser
from synoro.core.prompts import PromptRegistry
from synoro.infra.config import Settings, load_settings, validate_startup_env
from synoro.infra.logging_config import configure_logging
from synoro.infra.observability import initialize_otel, load_observability_config
from synoro.infra.prompt_store import LangfusePromptClient
from synoro.infra.resilience import TimeoutConfig

LOGGER = logging.getLogger(__name__)


def _register_handlers(application: Application) -> None:
    application.add_handler(CommandHandler("start", handlers.start))
    application.add_handler(CommandHandler("help", handlers.help_command))
    application.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handlers.text_message))


def build_prompt_registry(settings: Settings) -> PromptRegistry:
    if not settings.langfuse_configured:
        return PromptRegistry()
    remote = LangfusePromptClient(
        public_key=settings.langfuse_public_key or "",
        secret_key=settings.langfuse_secret_key or "",
        base_url=settings.langfuse_base_url,
        timeout_seconds=TimeoutConfig().prompt_store_seconds,
    )
    return PromptRegistry(remote=remote)


def build_components(
    settings: Settings,
    *,
    generator: TextGenerator | None = None,
    prompt_registry: PromptRegistry | None = None,
) -> dict[str, Any]:
    """Wire the message pipeline; the result is merged into ``bot_data``."""
    generator = generator or build_text_generator(settings)
    registry = prompt_registry or build_prompt_registry(settings)
    classifier = Classifier(generator, registry)
    parser = TaskParser(generator, registry)
    advisor = Advisor(generator, registry)
    legacy = LegacyMessageProcessor(parser, advisor, model=generator.model)

    def _agent_manager_factory() -> BasicAgentManager:
        LOGGER.info("Creating agent manager")
        return BasicAgentManager(
            classifier=classifier,
            parser=parser,
            advisor=advisor,
            generator=generator,
            prompt_registry=registry,
        )

    return {
        "settings": settings,
        "prompt_registry": registry,
        "classifier": classifier,
        "processor": AgentMessageProcessor(_agent_manager_factory, legacy),
        "processing_options": ProcessingOptions(force_agent_mode=settings.force_agent_mode),
    }


def main() -> None:
    configure_logging()
    settings = load_settings()
    features = validate_startup_env(settings, logger=LOGGER)
    initialize_otel(load_observability_config())

    application = Application.builder().token(settings.bot_token).build()
    application.bot_data.update(build_components(settings))
    _register_handlers(application)

    LOGGER.info(
        "Synoro bot started env=%s provider=%s model=%s llm=%s prompt_store=%s",
        settings.env,
        settings.ai_provider,
        settings.advice_model,
        features.llm_enabled,
        features.prompt_store_enabled,
    )
    application.run_polling()


if __name__ == "__main__":
    main()
