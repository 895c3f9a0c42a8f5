"""Single-pass message processing keyed on the classified message type.

question/chat are answered, event (and any unknown type) is parsed and
advised on, irrelevant gets a static acknowledgment. Advisor errors are not
caught here; the transport decides what the user sees.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, fields
from typing import Callable

from synoro.core.advisor import Advisor
from synoro.core.models import (
    MessageContext,
    MessageTypeResult,
    ParsedTask,
    ProcessClassifiedMessageResult,
    Telemetry,
)
from synoro.core.parser import TaskParser

LOGGER = logging.getLogger(__name__)

IRRELEVANT_ACK_TEXT = "Понял, спасибо за сообщение! Если нужна помощь, просто спроси."


def _answer_template(text: str, answer: str) -> str:
    return answer


def _logged_template(text: str, tip: str | None = None) -> str:
    if tip:
        return f'Записал: "{text}".\nСовет: {tip}'
    return f'Записал: "{text}".'


def _irrelevant_template(text: str) -> str:
    return IRRELEVANT_ACK_TEXT


@dataclass(frozen=True)
class ResponseTemplates:
    question: Callable[[str, str], str] | None = None
    event: Callable[[str, str | None], str] | None = None
    chat: Callable[[str, str], str] | None = None
    irrelevant: Callable[[str], str] | None = None
    fallback: Callable[[str, str | None], str] | None = None


DEFAULT_TEMPLATES = ResponseTemplates(
    question=_answer_template,
    event=_logged_template,
    chat=_answer_template,
    irrelevant=_irrelevant_template,
    fallback=_logged_template,
)


def merge_templates(overrides: ResponseTemplates | None) -> ResponseTemplates:
    if overrides is None:
        return DEFAULT_TEMPLATES
    merged = {
        item.name: getattr(overrides, item.name) or getattr(DEFAULT_TEMPLATES, item.name)
        for item in fields(ResponseTemplates)
    }
    return ResponseTemplates(**merged)


@dataclass(frozen=True)
class MessageProcessorOptions:
    question_function_id: str = "message-question"
    chat_function_id: str = "message-chat"
    parse_function_id: str = "message-parse-task"
    advise_function_id: str = "message-advise"
    fallback_parse_function_id: str = "message-fallback-parse-task"
    fallback_advise_function_id: str = "message-fallback-advise"
    response_templates: ResponseTemplates | None = None


class LegacyMessageProcessor:
    def __init__(self, parser: TaskParser, advisor: Advisor, *, model: str) -> None:
        self._parser = parser
        self._advisor = advisor
        self._model = model

    @property
    def model(self) -> str:
        return self._model

    async def process_classified_message(
        self,
        text: str,
        message_type: MessageTypeResult,
        context: MessageContext,
        options: MessageProcessorOptions | None = None,
    ) -> ProcessClassifiedMessageResult:
        options = options or MessageProcessorOptions()
        templates = merge_templates(options.response_templates)
        metadata = context.telemetry_metadata()

        def _telemetry(function_id: str) -> Telemetry:
            return Telemetry(function_id=function_id, metadata=dict(metadata))

        parsed: ParsedTask | None = None
        kind = message_type.type
        if kind == "question":
            answer = await self._advisor.answer_question(
                text, message_type, _telemetry(options.question_function_id)
            )
            response = templates.question(text, answer)
        elif kind == "chat":
            answer = await self._advisor.answer_question(
                text, message_type, _telemetry(options.chat_function_id)
            )
            response = templates.chat(text, answer)
        elif kind == "irrelevant":
            response = templates.irrelevant(text)
        elif kind == "event":
            parsed, tip = await self._parse_and_advise(
                text,
                _telemetry(options.parse_function_id),
                _telemetry(options.advise_function_id),
            )
            response = templates.event(text, tip)
        else:
            LOGGER.info("Unknown message type=%s; processing as event", kind)
            parsed, tip = await self._parse_and_advise(
                text,
                _telemetry(options.fallback_parse_function_id),
                _telemetry(options.fallback_advise_function_id),
            )
            response = templates.fallback(text, tip)

        return ProcessClassifiedMessageResult(response=response, parsed=parsed, model=self._model)

    async def _parse_and_advise(
        self,
        text: str,
        parse_telemetry: Telemetry,
        advise_telemetry: Telemetry,
    ) -> tuple[ParsedTask | None, str]:
        # independent calls on the same text
        parsed, tip = await asyncio.gather(
            self._parser.parse_task(text, parse_telemetry),
            self._advisor.advise(text, advise_telemetry),
        )
        return parsed, tip
