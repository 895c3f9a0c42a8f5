from __future__ import annotations

import json
import logging
from typing import Any, Callable, TypeVar

from synoro.core import prompts
from synoro.core.context import parse_context_safely, render_conversation_history
from synoro.core.generation import TextGenerator
from synoro.core.json_extract import extract_first_json_object
from synoro.core.models import (
    MessageClassificationResult,
    MessageTypeResult,
    RelevanceResult,
    Telemetry,
    classification_from_payload,
    message_type_from_payload,
    relevance_from_payload,
)
from synoro.core.prompts import PromptRegistry

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

RELEVANCE_TEMPERATURE = 0.0
MESSAGE_TYPE_TEMPERATURE = 0.1


def default_relevance() -> RelevanceResult:
    return RelevanceResult(relevant=False, score=0.0)


def default_message_type() -> MessageTypeResult:
    return MessageTypeResult(type="chat", subtype=None, confidence=0.3, need_logging=False)


class Classifier:
    """Relevance and message-type classification.

    Never raises: any failure (prompt store, provider, missing JSON, schema
    mismatch) returns the conservative default, "not relevant" and "just
    chat, don't log".
    """

    def __init__(self, generator: TextGenerator, prompt_registry: PromptRegistry) -> None:
        self._generator = generator
        self._prompts = prompt_registry

    async def classify_relevance(self, text: str, telemetry: Telemetry | None = None) -> RelevanceResult:
        return await self._classify(
            text,
            telemetry,
            prompt_key=prompts.CLASSIFIER_RELEVANCE,
            default_function_id="ai-classify-relevance",
            temperature=RELEVANCE_TEMPERATURE,
            build_prompt=lambda _: f"Message: {text}\nJSON:",
            validate=relevance_from_payload,
            fallback=default_relevance,
        )

    async def classify_message_type(
        self,
        text: str,
        telemetry: Telemetry | None = None,
    ) -> MessageTypeResult:
        return await self._classify(
            text,
            telemetry,
            prompt_key=prompts.CLASSIFIER_MESSAGE_TYPE,
            default_function_id="ai-classify-message-type",
            temperature=MESSAGE_TYPE_TEMPERATURE,
            build_prompt=lambda _: f"Message: {text}\nJSON:",
            validate=message_type_from_payload,
            fallback=default_message_type,
        )

    async def classify_message(
        self,
        text: str,
        telemetry: Telemetry | None = None,
    ) -> MessageClassificationResult:
        """Relevance and message type in one call, aware of conversation history."""
        return await self._classify(
            text,
            telemetry,
            prompt_key=prompts.MESSAGE_CLASSIFIER,
            default_function_id="ai-classify-combined",
            temperature=MESSAGE_TYPE_TEMPERATURE,
            build_prompt=lambda t: _combined_prompt(text, t),
            validate=classification_from_payload,
            fallback=lambda: MessageClassificationResult(
                message_type=default_message_type(),
                relevance=default_relevance(),
            ),
        )

    async def _classify(
        self,
        text: str,
        telemetry: Telemetry | None,
        *,
        prompt_key: str,
        default_function_id: str,
        temperature: float,
        build_prompt: Callable[[Telemetry | None], str],
        validate: Callable[[Any], T],
        fallback: Callable[[], T],
    ) -> T:
        function_id = (telemetry.function_id if telemetry else None) or default_function_id
        try:
            system = await self._prompts.get_system_prompt(prompt_key)
            out = await self._generator.generate(
                system=system,
                prompt=build_prompt(telemetry),
                temperature=temperature,
                telemetry=Telemetry(
                    function_id=function_id,
                    metadata=dict(telemetry.metadata) if telemetry else {},
                ),
            )
            candidate = extract_first_json_object(out.strip())
            if candidate is None:
                LOGGER.warning(
                    "Classifier returned no JSON function_id=%s preview=%r",
                    function_id,
                    out[:200],
                )
                return fallback()
            return validate(json.loads(candidate))
        except Exception as exc:
            LOGGER.warning(
                "Classification failed function_id=%s error=%s: %s; using default",
                function_id,
                type(exc).__name__,
                exc,
            )
            return fallback()


def _combined_prompt(text: str, telemetry: Telemetry | None) -> str:
    history = parse_context_safely(telemetry)
    if not history:
        return f"Message: {text}\nJSON:"
    rendered = render_conversation_history(history, "Контекст беседы:")
    return f"{rendered}Текущее сообщение для классификации: {text}\nJSON:"
