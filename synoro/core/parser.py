from __future__ import annotations

import json
import logging
import math
from typing import Any

from synoro.core import prompts
from synoro.core.generation import TextGenerator
from synoro.core.json_extract import extract_first_json_object
from synoro.core.models import ParsedTask, Telemetry
from synoro.core.prompts import PromptRegistry

LOGGER = logging.getLogger(__name__)

PARSE_TEMPERATURE = 0.2
DEFAULT_TASK_CONFIDENCE = 0.5
_PREVIEW_LIMIT = 200


class TaskParser:
    """Extracts ``action``/``object`` from free text.

    Returns None when the message could not be structured; callers treat
    that as "nothing to log", not as an error.
    """

    def __init__(self, generator: TextGenerator, prompt_registry: PromptRegistry) -> None:
        self._generator = generator
        self._prompts = prompt_registry

    async def parse_task(self, text: str, telemetry: Telemetry | None = None) -> ParsedTask | None:
        function_id = (telemetry.function_id if telemetry else None) or "ai-parse-task"
        try:
            system = await self._prompts.get_system_prompt(prompts.PARSER_TASK)
            out = await self._generator.generate(
                system=system,
                prompt=f"Text: {text}\nJSON:",
                temperature=PARSE_TEMPERATURE,
                telemetry=Telemetry(
                    function_id=function_id,
                    metadata=dict(telemetry.metadata) if telemetry else {},
                ),
            )
        except Exception as exc:
            LOGGER.warning("parse_task: unexpected error function_id=%s error=%s", function_id, exc)
            return None

        trimmed = out.strip()
        candidate = extract_first_json_object(trimmed)
        if candidate is None:
            LOGGER.warning(
                "parse_task: no JSON object in model output function_id=%s preview=%r",
                function_id,
                trimmed[:_PREVIEW_LIMIT],
            )
            return None
        try:
            payload = json.loads(candidate)
        except ValueError as exc:
            LOGGER.warning(
                "parse_task: JSON decode failed function_id=%s error=%s preview=%r",
                function_id,
                exc,
                candidate[:_PREVIEW_LIMIT],
            )
            return None
        return task_from_payload(payload, function_id=function_id)


def task_from_payload(payload: Any, *, function_id: str = "ai-parse-task") -> ParsedTask | None:
    if not isinstance(payload, dict):
        LOGGER.warning("parse_task: payload is not an object function_id=%s", function_id)
        return None
    action = payload.get("action")
    if not isinstance(action, str) or not action.strip():
        LOGGER.warning(
            "parse_task: invalid or missing 'action' function_id=%s value_type=%s",
            function_id,
            type(action).__name__,
        )
        return None
    obj = payload.get("object")
    if not isinstance(obj, str) or not obj.strip():
        LOGGER.warning(
            "parse_task: invalid or missing 'object' function_id=%s value_type=%s",
            function_id,
            type(obj).__name__,
        )
        return None
    return ParsedTask(
        action=action.strip(),
        object=obj.strip(),
        confidence=clamp_confidence(payload.get("confidence")),
    )


def clamp_confidence(value: Any) -> float:
    if isinstance(value, bool):
        return DEFAULT_TASK_CONFIDENCE
    try:
        number = float(value)
    except (TypeError, ValueError):
        return DEFAULT_TASK_CONFIDENCE
    if not math.isfinite(number):
        return DEFAULT_TASK_CONFIDENCE
    return min(1.0, max(0.0, number))
