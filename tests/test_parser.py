from __future__ import annotations

import asyncio
import logging
import math

import pytest

from synoro.core.models import Telemetry
from synoro.core.parser import TaskParser, clamp_confidence, task_from_payload
from synoro.core.prompts import PromptRegistry


class FakeGenerator:
    def __init__(self, output: str = "", error: Exception | None = None) -> None:
        self.model = "test-model"
        self.output = output
        self.error = error
        self.calls: list[dict] = []

    async def generate(self, *, system: str, prompt: str, temperature: float, telemetry: Telemetry) -> str:
        self.calls.append({"prompt": prompt, "temperature": temperature, "telemetry": telemetry})
        if self.error is not None:
            raise self.error
        return self.output


def _parse(output: str = "", error: Exception | None = None, text: str = "Купил хлеб за 50 рублей"):
    generator = FakeGenerator(output, error)
    parser = TaskParser(generator, PromptRegistry())  # type: ignore[arg-type]
    return asyncio.run(parser.parse_task(text)), generator


def test_parse_task_returns_trimmed_task() -> None:
    parsed, generator = _parse('```json\n{"action": " купил ", "object": " хлеб ", "confidence": 0.8}\n```')

    assert parsed is not None
    assert parsed.action == "купил"
    assert parsed.object == "хлеб"
    assert parsed.confidence == 0.8
    assert generator.calls[0]["temperature"] == 0.2
    assert generator.calls[0]["prompt"] == "Text: Купил хлеб за 50 рублей\nJSON:"
    assert generator.calls[0]["telemetry"].function_id == "ai-parse-task"


def test_missing_confidence_defaults_to_half() -> None:
    parsed, _ = _parse('{"action": "купил", "object": "хлеб"}')

    assert parsed is not None
    assert parsed.confidence == 0.5


@pytest.mark.parametrize(
    "output",
    [
        "",
        "no json at all",
        '{"action": "", "object": "хлеб"}',
        '{"action": "купил", "object": "   "}',
        '{"action": 1, "object": "хлеб"}',
        '{"action": "купил", "object": "хлеб",}',
    ],
)
def test_unusable_output_returns_none(output: str) -> None:
    parsed, _ = _parse(output)

    assert parsed is None


def test_provider_error_returns_none_and_logs(caplog) -> None:
    with caplog.at_level(logging.WARNING):
        parsed, _ = _parse(error=RuntimeError("timeout"))

    assert parsed is None
    assert "parse_task" in caplog.text


def test_warning_carries_output_preview(caplog) -> None:
    with caplog.at_level(logging.WARNING):
        _parse("x" * 500)

    record = next(r for r in caplog.records if "no JSON object" in r.getMessage())
    assert "x" * 200 in record.getMessage()
    assert "x" * 201 not in record.getMessage()


def test_task_from_payload_rejects_non_object() -> None:
    assert task_from_payload(["купил", "хлеб"]) is None


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (0.7, 0.7),
        (1.7, 1.0),
        (-3, 0.0),
        ("0.4", 0.4),
        ("high", 0.5),
        (None, 0.5),
        (True, 0.5),
        (math.nan, 0.5),
        (math.inf, 0.5),
    ],
)
def test_clamp_confidence(value: object, expected: float) -> None:
    assert clamp_confidence(value) == expected
