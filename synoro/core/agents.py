"""Built-in multi-step agent pipeline.

Router -> specialist -> optional quality loop, assembled from the same
classifier/parser/advisor primitives the single-pass processor uses.
Failures in the router or the specialist propagate; the caller owns recovery.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Final, Protocol

from synoro.core import prompts
from synoro.core.advisor import Advisor
from synoro.core.classifier import Classifier
from synoro.core.generation import TextGenerator
from synoro.core.json_extract import parse_json_object
from synoro.core.models import AgentContext, OrchestrationResult, Telemetry
from synoro.core.parser import TaskParser, clamp_confidence
from synoro.core.prompts import PromptRegistry

LOGGER = logging.getLogger(__name__)

ROUTER_AGENT: Final[str] = "Message Router"
TASK_ORCHESTRATOR_AGENT: Final[str] = "Task Orchestrator"
QA_SPECIALIST_AGENT: Final[str] = "Q&A Specialist"
QUALITY_EVALUATOR_AGENT: Final[str] = "Quality Evaluator"

ANALYTICAL_KEYWORDS: Final[tuple[str, ...]] = (
    "анализ",
    "статистика",
    "сравни",
    "оптимизируй",
    "план",
    "стратегия",
)

SPECIALIST_CONFIDENCE = 0.7
EVALUATION_TEMPERATURE = 0.1
IMPROVEMENT_TEMPERATURE = 0.5
EMPTY_TIP_RESPONSE = "Записал. Если нужен совет, уточните, пожалуйста, детали."


def has_analytical_intent(text: str) -> bool:
    lowered = text.lower()
    return any(keyword in lowered for keyword in ANALYTICAL_KEYWORDS)


@dataclass(frozen=True)
class QualityControlOptions:
    use_quality_control: bool = True
    max_quality_iterations: int = 2
    target_quality: float = 0.8


class AgentManager(Protocol):
    async def process_message(
        self,
        text: str,
        agent_context: AgentContext,
        options: QualityControlOptions,
        telemetry: Telemetry | None = None,
    ) -> OrchestrationResult:
        ...


@dataclass(frozen=True)
class _Evaluation:
    score: float
    feedback: str


class BasicAgentManager:
    def __init__(
        self,
        *,
        classifier: Classifier,
        parser: TaskParser,
        advisor: Advisor,
        generator: TextGenerator,
        prompt_registry: PromptRegistry,
    ) -> None:
        self._classifier = classifier
        self._parser = parser
        self._advisor = advisor
        self._generator = generator
        self._prompts = prompt_registry

    async def process_message(
        self,
        text: str,
        agent_context: AgentContext,
        options: QualityControlOptions | None = None,
        telemetry: Telemetry | None = None,
    ) -> OrchestrationResult:
        options = options or QualityControlOptions()
        start = time.monotonic()
        base_metadata: dict[str, Any] = dict(telemetry.metadata) if telemetry else {}
        agents_used: list[str] = []
        total_steps = 0

        def _telemetry(function_id: str, agent: str) -> Telemetry:
            return Telemetry(function_id=function_id, metadata={**base_metadata, "agentName": agent})

        classification = await self._classifier.classify_message(
            text, _telemetry("agent-router", ROUTER_AGENT)
        )
        agents_used.append(ROUTER_AGENT)
        total_steps += 1

        message_type = classification.message_type
        use_orchestrator = (
            message_type.type == "event" or message_type.need_logging or has_analytical_intent(text)
        )
        agent_data: dict[str, Any] = {}
        if use_orchestrator:
            LOGGER.info("Agent routing: type=%s target=%s", message_type.type, TASK_ORCHESTRATOR_AGENT)
            parsed, tip = await asyncio.gather(
                self._parser.parse_task(
                    text, _telemetry("agent-task-orchestrator-parse", TASK_ORCHESTRATOR_AGENT)
                ),
                self._advisor.advise(
                    text, _telemetry("agent-task-orchestrator-advise", TASK_ORCHESTRATOR_AGENT)
                ),
            )
            agent_data["parsedEvent"] = parsed.to_dict() if parsed else None
            response = tip or EMPTY_TIP_RESPONSE
            agents_used.append(TASK_ORCHESTRATOR_AGENT)
        else:
            LOGGER.info("Agent routing: type=%s target=%s", message_type.type, QA_SPECIALIST_AGENT)
            response = await self._advisor.answer_question(
                text, message_type, _telemetry("agent-qa-specialist", QA_SPECIALIST_AGENT)
            )
            agents_used.append(QA_SPECIALIST_AGENT)
        total_steps += 1
        quality_score = SPECIALIST_CONFIDENCE

        if options.use_quality_control and response:
            response, quality_score, iterations = await self._evaluate_and_improve(
                text,
                response,
                max_iterations=options.max_quality_iterations,
                target_quality=options.target_quality,
                telemetry=_telemetry("agent-quality-evaluation", QUALITY_EVALUATOR_AGENT),
            )
            agents_used.append(QUALITY_EVALUATOR_AGENT)
            total_steps += iterations

        return OrchestrationResult(
            final_response=response,
            agents_used=agents_used,
            total_steps=total_steps,
            quality_score=quality_score,
            metadata={
                "classification": {
                    "messageType": message_type.to_dict(),
                    "relevance": classification.relevance.to_dict(),
                },
                "agentData": agent_data,
                "processingTime": round((time.monotonic() - start) * 1000, 2),
            },
        )

    async def _evaluate_and_improve(
        self,
        text: str,
        response: str,
        *,
        max_iterations: int,
        target_quality: float,
        telemetry: Telemetry,
    ) -> tuple[str, float, int]:
        current = response
        evaluation: _Evaluation | None = None
        iterations = 0
        rounds = max(1, max_iterations)
        for attempt in range(rounds):
            evaluation = await self._evaluate(text, current, telemetry)
            iterations += 1
            # the returned score always belongs to the returned text
            if evaluation.score >= target_quality or attempt == rounds - 1:
                break
            improved = await self._improve(text, current, evaluation, telemetry)
            if not improved or improved == current:
                break
            current = improved
        LOGGER.info(
            "Quality control finished score=%.2f iterations=%s",
            evaluation.score if evaluation else 0.5,
            iterations,
        )
        return current, evaluation.score if evaluation else 0.5, iterations

    async def _evaluate(self, text: str, response: str, telemetry: Telemetry) -> _Evaluation:
        try:
            system = await self._prompts.get_system_prompt(prompts.QUALITY_EVALUATOR)
            out = await self._generator.generate(
                system=system,
                prompt=f'Запрос пользователя: "{text}"\nОтвет ассистента: "{response}"\nJSON:',
                temperature=EVALUATION_TEMPERATURE,
                telemetry=telemetry,
            )
        except Exception as exc:
            LOGGER.warning("Quality evaluation failed error=%s; using neutral score", exc)
            return _Evaluation(score=0.5, feedback="")
        payload = parse_json_object(out) or {}
        feedback = payload.get("feedback")
        return _Evaluation(
            score=clamp_confidence(payload.get("score")),
            feedback=feedback if isinstance(feedback, str) else "",
        )

    async def _improve(
        self,
        text: str,
        response: str,
        evaluation: _Evaluation,
        telemetry: Telemetry,
    ) -> str:
        prompt = (
            f'Исходный запрос: "{text}"\n\n'
            f'Оригинальный ответ: "{response}"\n\n'
            f"Текущая оценка: {evaluation.score:.2f}\n"
            f"Замечания: {evaluation.feedback or 'нет'}\n\n"
            "Создай улучшенную версию ответа, исправив указанные проблемы. "
            "Верни только текст ответа."
        )
        try:
            system = await self._prompts.get_system_prompt(prompts.ASSISTANT)
            improved = await self._generator.generate(
                system=system,
                prompt=prompt,
                temperature=IMPROVEMENT_TEMPERATURE,
                telemetry=Telemetry(function_id="agent-response-improvement", metadata=dict(telemetry.metadata)),
            )
        except Exception as exc:
            LOGGER.warning("Response improvement failed error=%s; keeping original", exc)
            return response
        return improved.strip()
