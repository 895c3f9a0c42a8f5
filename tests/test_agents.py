from __future__ import annotations

import asyncio
import json

import pytest

from synoro.core.advisor import Advisor
from synoro.core.agents import (
    QUALITY_EVALUATOR_AGENT,
    BasicAgentManager,
    QualityControlOptions,
    has_analytical_intent,
)
from synoro.core.classifier import Classifier
from synoro.core.models import AgentContext, Telemetry
from synoro.core.parser import TaskParser
from synoro.core.prompts import PromptRegistry


def _classification(kind: str, need_logging: bool = False) -> str:
    return json.dumps(
        {
            "messageType": {"type": kind, "subtype": None, "confidence": 0.9, "need_logging": need_logging},
            "relevance": {"relevant": True, "score": 0.9},
        }
    )


class RoutingGenerator:
    """Answers by function id; evaluation scores are consumed in order."""

    def __init__(self, responses: dict[str, str], scores: list[str] | None = None) -> None:
        self.model = "test-model"
        self.responses = responses
        self.scores = list(scores or [])
        self.function_ids: list[str] = []

    async def generate(self, *, system: str, prompt: str, temperature: float, telemetry: Telemetry) -> str:
        function_id = telemetry.function_id or ""
        self.function_ids.append(function_id)
        if function_id == "agent-quality-evaluation":
            return self.scores.pop(0) if self.scores else '{"score": 0.5}'
        if function_id not in self.responses:
            raise KeyError(function_id)
        return self.responses[function_id]


def _manager(generator: RoutingGenerator) -> BasicAgentManager:
    registry = PromptRegistry()
    return BasicAgentManager(
        classifier=Classifier(generator, registry),  # type: ignore[arg-type]
        parser=TaskParser(generator, registry),  # type: ignore[arg-type]
        advisor=Advisor(generator, registry),  # type: ignore[arg-type]
        generator=generator,  # type: ignore[arg-type]
        prompt_registry=registry,
    )


def _context() -> AgentContext:
    return AgentContext(channel="telegram", user_id="42", chat_id="100")


def test_event_goes_through_task_orchestrator() -> None:
    generator = RoutingGenerator(
        {
            "agent-router": _classification("event", need_logging=True),
            "agent-task-orchestrator-parse": '{"action": "купил", "object": "хлеб", "confidence": 0.9}',
            "agent-task-orchestrator-advise": "Сравните цены.",
        }
    )

    result = asyncio.run(
        _manager(generator).process_message(
            "Купил хлеб за 50 рублей",
            _context(),
            QualityControlOptions(use_quality_control=False),
            Telemetry(function_id="agent-processor-main", metadata={"userId": "42"}),
        )
    )

    assert result.final_response == "Сравните цены."
    assert result.agents_used == ["Message Router", "Task Orchestrator"]
    assert result.total_steps == 2
    assert result.quality_score == 0.7
    assert result.metadata["agentData"]["parsedEvent"] == {"action": "купил", "object": "хлеб", "confidence": 0.9}
    assert result.metadata["classification"]["messageType"]["type"] == "event"
    assert result.metadata["processingTime"] >= 0


def test_question_goes_to_qa_specialist() -> None:
    generator = RoutingGenerator(
        {
            "agent-router": _classification("question"),
            "agent-qa-specialist": "Я помогаю вести учёт покупок.",
        }
    )

    result = asyncio.run(
        _manager(generator).process_message("Что ты умеешь?", _context(), QualityControlOptions(use_quality_control=False))
    )

    assert result.agents_used == ["Message Router", "Q&A Specialist"]
    assert result.final_response == "Я помогаю вести учёт покупок."
    assert result.metadata["agentData"] == {}


def test_quality_loop_improves_until_target() -> None:
    generator = RoutingGenerator(
        {
            "agent-router": _classification("question"),
            "agent-qa-specialist": "Коротко.",
            "agent-response-improvement": "Подробный и полезный ответ.",
        },
        scores=['{"score": 0.4, "feedback": "слишком коротко"}', '{"score": 0.9, "feedback": "хорошо"}'],
    )

    result = asyncio.run(
        _manager(generator).process_message(
            "Что ты умеешь?",
            _context(),
            QualityControlOptions(use_quality_control=True, max_quality_iterations=2, target_quality=0.8),
        )
    )

    assert result.final_response == "Подробный и полезный ответ."
    assert result.quality_score == 0.9
    assert result.agents_used[-1] == QUALITY_EVALUATOR_AGENT
    assert result.total_steps == 4
    assert generator.function_ids.count("agent-quality-evaluation") == 2


def test_quality_loop_stops_when_target_met() -> None:
    generator = RoutingGenerator(
        {"agent-router": _classification("chat"), "agent-qa-specialist": "Привет!"},
        scores=['{"score": 0.95}'],
    )

    result = asyncio.run(_manager(generator).process_message("Привет", _context()))

    assert result.final_response == "Привет!"
    assert result.quality_score == 0.95
    assert "agent-response-improvement" not in generator.function_ids


def test_specialist_failure_propagates() -> None:
    generator = RoutingGenerator({"agent-router": _classification("question")})

    with pytest.raises(KeyError):
        asyncio.run(
            _manager(generator).process_message("Что ты умеешь?", _context(), QualityControlOptions(use_quality_control=False))
        )


def test_has_analytical_intent() -> None:
    assert has_analytical_intent("Сделай АНАЛИЗ трат")
    assert not has_analytical_intent("Купил хлеб")


def test_quality_score_belongs_to_returned_response() -> None:
    generator = RoutingGenerator(
        {
            "agent-router": _classification("question"),
            "agent-qa-specialist": "Коротко.",
            "agent-response-improvement": "Чуть подробнее.",
        },
        scores=['{"score": 0.4}', '{"score": 0.3}'],
    )

    result = asyncio.run(
        _manager(generator).process_message(
            "Что ты умеешь?",
            _context(),
            QualityControlOptions(use_quality_control=True, max_quality_iterations=2, target_quality=0.8),
        )
    )

    assert result.final_response == "Чуть подробнее."
    assert result.quality_score == 0.3
    assert generator.function_ids.count("agent-quality-evaluation") == 2
    assert generator.function_ids.count("agent-response-improvement") == 1
