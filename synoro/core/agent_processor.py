"""Routing between the agent pipeline and the single-pass processor.

The agent path never raises: any failure becomes an apology with synthetic
low-quality metadata. The legacy path keeps its own propagate-on-error
contract.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Final

from synoro.core.agents import (
    ANALYTICAL_KEYWORDS,
    QA_SPECIALIST_AGENT,
    TASK_ORCHESTRATOR_AGENT,
    AgentManager,
    QualityControlOptions,
)
from synoro.core.message_processor import LegacyMessageProcessor, MessageProcessorOptions
from synoro.core.models import (
    AgentContext,
    AgentMetadata,
    AgentProcessingResult,
    MessageContext,
    MessageTypeResult,
    OrchestrationResult,
    ParsedTask,
    Telemetry,
    is_parsed_task,
)
from synoro.core.parser import task_from_payload

LOGGER = logging.getLogger(__name__)

AGENT_PROCESSOR_FUNCTION_ID: Final[str] = "agent-processor-main"
ORCHESTRATOR_MODEL: Final[str] = "gpt-5-mini"
SPECIALIST_MODEL: Final[str] = "gpt-5-nano"
DEFAULT_AGENT_MODEL: Final[str] = "gpt-5-nano"

LONG_MESSAGE_THRESHOLD = 100
LOW_CONFIDENCE_THRESHOLD = 0.7
AGENT_ONLY_TYPES: Final[frozenset[str]] = frozenset({"complex_task", "analysis"})

AGENT_ERROR_TEXT = (
    "Извините, произошла ошибка при обработке сообщения. "
    "Попробуйте переформулировать запрос или повторите попытку позже."
)
ERROR_HANDLER_AGENT = "error-handler"
ERROR_QUALITY_SCORE = 0.3


@dataclass(frozen=True)
class ProcessingOptions:
    force_agent_mode: bool = False
    use_quality_control: bool = True
    max_quality_iterations: int = 2
    target_quality: float = 0.8
    legacy: MessageProcessorOptions = field(default_factory=MessageProcessorOptions)

    def quality_control(self) -> QualityControlOptions:
        return QualityControlOptions(
            use_quality_control=self.use_quality_control,
            max_quality_iterations=self.max_quality_iterations,
            target_quality=self.target_quality,
        )


def should_use_agent_processing(
    text: str,
    message_type: MessageTypeResult,
    force_agent_mode: bool = False,
) -> bool:
    if force_agent_mode:
        return True
    lowered = text.lower()
    if any(keyword in lowered for keyword in ANALYTICAL_KEYWORDS):
        return True
    if len(text) > LONG_MESSAGE_THRESHOLD:
        return True
    if message_type.confidence < LOW_CONFIDENCE_THRESHOLD:
        return True
    return message_type.type in AGENT_ONLY_TYPES


def model_from_agents(agents_used: list[str]) -> str:
    if TASK_ORCHESTRATOR_AGENT in agents_used:
        return ORCHESTRATOR_MODEL
    if QA_SPECIALIST_AGENT in agents_used:
        return SPECIALIST_MODEL
    return DEFAULT_AGENT_MODEL


def extract_parsed_task(metadata: dict[str, Any] | None) -> ParsedTask | None:
    """Recover a task from the agent pipeline's untyped ``agentData``."""
    agent_data = (metadata or {}).get("agentData")
    if not isinstance(agent_data, dict):
        return None
    for key in ("parsedEvent", "structuredData"):
        candidate = agent_data.get(key)
        if not is_parsed_task(candidate):
            continue
        task = task_from_payload(candidate, function_id=AGENT_PROCESSOR_FUNCTION_ID)
        if task is not None:
            return task
    return None


def build_conversation_context(context: MessageContext) -> dict[str, Any]:
    """Trace-only summary of the history attached to a message."""
    messages = context.context or []
    total = context.metadata.get("totalMessages")
    if not isinstance(total, int) or isinstance(total, bool) or total < len(messages):
        total = len(messages)
    return {
        "conversationId": context.conversation_id,
        "totalMessages": total,
        "contextMessages": len(messages),
        "hasMoreMessages": total > len(messages),
        "conversationHistory": [
            {
                "id": message.id,
                "role": message.role,
                "content": message.text,
                "createdAt": message.created_at.isoformat(),
            }
            for message in messages
        ],
    }


def build_agent_context(context: MessageContext) -> AgentContext:
    metadata = dict(context.metadata)
    if context.context and "conversationContext" not in metadata:
        metadata["conversationContext"] = build_conversation_context(context)
    return AgentContext(
        channel=context.channel,
        user_id=context.user_id,
        chat_id=context.chat_id,
        message_id=context.message_id,
        metadata=metadata,
    )


class AgentMessageProcessor:
    """Single entry point for classified messages.

    The agent manager is built on first use of the agent path, so traffic that
    only ever takes the single-pass path never constructs it.
    """

    def __init__(
        self,
        agent_manager_factory: Callable[[], AgentManager],
        legacy_processor: LegacyMessageProcessor,
    ) -> None:
        self._agent_manager_factory = agent_manager_factory
        self._agent_manager: AgentManager | None = None
        self._legacy = legacy_processor

    @property
    def agent_manager_created(self) -> bool:
        return self._agent_manager is not None

    def _get_agent_manager(self) -> AgentManager:
        if self._agent_manager is None:
            self._agent_manager = self._agent_manager_factory()
        return self._agent_manager

    async def process_hybrid(
        self,
        text: str,
        message_type: MessageTypeResult,
        context: MessageContext,
        options: ProcessingOptions | None = None,
    ) -> AgentProcessingResult:
        options = options or ProcessingOptions()
        if should_use_agent_processing(text, message_type, options.force_agent_mode):
            LOGGER.info("Routing message to agents type=%s confidence=%.2f", message_type.type, message_type.confidence)
            result = await self.process_with_agents(text, message_type, context, options)
            return AgentProcessingResult(
                response=result.response,
                parsed=result.parsed,
                model=result.model,
                processing_mode="agents",
                agent_metadata=result.agent_metadata,
            )

        LOGGER.info("Routing message to legacy processor type=%s", message_type.type)
        legacy = await self._legacy.process_classified_message(text, message_type, context, options.legacy)
        return AgentProcessingResult(
            response=legacy.response,
            parsed=legacy.parsed,
            model=legacy.model,
            processing_mode="legacy",
        )

    async def process_with_agents(
        self,
        text: str,
        message_type: MessageTypeResult,
        context: MessageContext,
        options: ProcessingOptions | None = None,
    ) -> AgentProcessingResult:
        options = options or ProcessingOptions()
        start = time.monotonic()
        try:
            telemetry = Telemetry(
                function_id=AGENT_PROCESSOR_FUNCTION_ID,
                metadata={
                    **context.telemetry_metadata(),
                    "messageType": message_type.type,
                    "confidence": message_type.confidence,
                    "needLogging": message_type.need_logging,
                    "textLength": len(text),
                },
            )
            orchestration = await self._get_agent_manager().process_message(
                text,
                build_agent_context(context),
                options.quality_control(),
                telemetry,
            )
            return self._to_result(orchestration, start)
        except Exception:
            LOGGER.exception("Agent processing failed; returning apology")
            return AgentProcessingResult(
                response=AGENT_ERROR_TEXT,
                parsed=None,
                model=DEFAULT_AGENT_MODEL,
                agent_metadata=AgentMetadata(
                    agents_used=[ERROR_HANDLER_AGENT],
                    total_steps=0,
                    quality_score=ERROR_QUALITY_SCORE,
                    processing_time=_elapsed_ms(start),
                ),
            )

    @staticmethod
    def _to_result(orchestration: OrchestrationResult, start: float) -> AgentProcessingResult:
        metadata = orchestration.metadata or {}
        processing_time = metadata.get("processingTime")
        if not isinstance(processing_time, (int, float)) or isinstance(processing_time, bool):
            processing_time = _elapsed_ms(start)
        return AgentProcessingResult(
            response=orchestration.final_response,
            parsed=extract_parsed_task(metadata),
            model=model_from_agents(orchestration.agents_used),
            agent_metadata=AgentMetadata(
                agents_used=list(orchestration.agents_used),
                total_steps=orchestration.total_steps,
                quality_score=orchestration.quality_score,
                processing_time=float(processing_time),
            ),
        )


def _elapsed_ms(start: float) -> float:
    return round((time.monotonic() - start) * 1000, 2)
