from __future__ import annotations

import asyncio
import json

import pytest

from synoro.core.advisor import Advisor, build_answer_framing
from synoro.core.models import MessageTypeResult, Telemetry
from synoro.core.prompts import LOCAL_PROMPTS, PromptRegistry


class FakeGenerator:
    def __init__(self, output: str = "  совет  ", error: Exception | None = None) -> None:
        self.model = "test-model"
        self.output = output
        self.error = error
        self.calls: list[dict] = []

    async def generate(self, *, system: str, prompt: str, temperature: float, telemetry: Telemetry) -> str:
        self.calls.append(
            {"system": system, "prompt": prompt, "temperature": temperature, "telemetry": telemetry}
        )
        if self.error is not None:
            raise self.error
        return self.output


def _history() -> str:
    return json.dumps(
        [
            {"id": "1", "role": "user", "content": {"text": "Купил молоко"}, "createdAt": 1714557600},
            {"id": "2", "role": "assistant", "content": {"text": "Записал"}, "createdAt": 1714557601},
        ]
    )


def test_advise_uses_history_and_assistant_prompt() -> None:
    generator = FakeGenerator()
    advisor = Advisor(generator, PromptRegistry())  # type: ignore[arg-type]

    tip = asyncio.run(
        advisor.advise("Купил хлеб", Telemetry(function_id="message-advise", metadata={"context": _history()}))
    )

    assert tip == "совет"
    call = generator.calls[0]
    assert call["temperature"] == 0.4
    assert call["system"] == LOCAL_PROMPTS["assistant"]
    assert call["prompt"].startswith("Контекст беседы:\n1. Пользователь: Купил молоко\n2. Ассистент: Записал\n\n")
    assert 'Текущее событие: "Купил хлеб"' in call["prompt"]
    assert call["telemetry"].function_id == "message-advise"


def test_advise_without_history() -> None:
    generator = FakeGenerator()
    advisor = Advisor(generator, PromptRegistry())  # type: ignore[arg-type]

    asyncio.run(advisor.advise("Купил хлеб"))

    assert generator.calls[0]["prompt"].startswith('Текущее событие: "Купил хлеб"')
    assert generator.calls[0]["telemetry"].function_id == "ai-advise"


def test_answer_question_uses_subtype_framing() -> None:
    generator = FakeGenerator("Я Synoro")
    advisor = Advisor(generator, PromptRegistry())  # type: ignore[arg-type]
    message_type = MessageTypeResult(type="question", subtype="about_bot", confidence=0.9)

    answer = asyncio.run(advisor.answer_question("Кто ты?", message_type))

    assert answer == "Я Synoro"
    call = generator.calls[0]
    assert call["temperature"] == 0.6
    assert "Пользователь спрашивает о тебе как о боте" in call["prompt"]
    assert call["telemetry"].function_id == "ai-answer-question"


@pytest.mark.parametrize(
    ("subtype", "marker"),
    [
        ("about_bot", "о тебе как о боте"),
        ("data_query", "о своих данных/статистике"),
        ("general", "общий вопрос"),
        (None, "Текущее сообщение пользователя"),
        ("unknown", "Текущее сообщение пользователя"),
    ],
)
def test_build_answer_framing(subtype: str | None, marker: str) -> None:
    framing = build_answer_framing("Вопрос?", subtype)

    assert marker in framing
    assert '"Вопрос?"' in framing


def test_advisor_errors_propagate() -> None:
    advisor = Advisor(FakeGenerator(error=RuntimeError("provider down")), PromptRegistry())  # type: ignore[arg-type]

    with pytest.raises(RuntimeError, match="provider down"):
        asyncio.run(advisor.advise("Купил хлеб"))
