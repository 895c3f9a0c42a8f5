"""Request-scoped data model of the message pipeline.

Nothing here is persisted: every object lives for one incoming message.
Payload validators are strict; classifier callers turn SchemaValidationError
into their safe defaults.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

MessageType = Literal["question", "event", "chat", "irrelevant"]
RelevanceCategory = Literal["relevant", "irrelevant", "spam"]
Channel = Literal["telegram", "web", "mobile"]
ContextRole = Literal["user", "assistant", "system", "tool"]
ProcessingMode = Literal["agents", "legacy"]

MESSAGE_TYPES: frozenset[str] = frozenset({"question", "event", "chat", "irrelevant"})
RELEVANCE_CATEGORIES: frozenset[str] = frozenset({"relevant", "irrelevant", "spam"})
CHANNELS: frozenset[str] = frozenset({"telegram", "web", "mobile"})


class SchemaValidationError(ValueError):
    """Raised when a model payload does not match the expected schema."""


@dataclass(frozen=True)
class MessageTypeResult:
    type: str
    subtype: str | None = None
    confidence: float = 0.0
    need_logging: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "subtype": self.subtype,
            "confidence": self.confidence,
            "need_logging": self.need_logging,
        }


@dataclass(frozen=True)
class RelevanceResult:
    relevant: bool
    score: float | None = None
    category: RelevanceCategory | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"relevant": self.relevant}
        if self.score is not None:
            payload["score"] = self.score
        if self.category is not None:
            payload["category"] = self.category
        return payload


@dataclass(frozen=True)
class MessageClassificationResult:
    message_type: MessageTypeResult
    relevance: RelevanceResult


@dataclass(frozen=True)
class ParsedTask:
    action: str
    object: str
    confidence: float = 0.5

    def to_dict(self) -> dict[str, Any]:
        return {"action": self.action, "object": self.object, "confidence": self.confidence}


@dataclass(frozen=True)
class ContextMessage:
    id: str
    role: ContextRole
    text: str
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": {"text": self.text},
            "createdAt": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class Telemetry:
    function_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class MessageContext:
    channel: Channel
    user_id: str
    chat_id: str | None = None
    message_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    conversation_id: str | None = None
    context: list[ContextMessage] | None = None

    def telemetry_metadata(self) -> dict[str, Any]:
        """Metadata repeated into every downstream call of one message.

        Correlation across calls relies on these fields only.
        """
        metadata: dict[str, Any] = dict(self.metadata)
        if self.context and "context" not in metadata:
            metadata["context"] = serialize_context(self.context)
        metadata["channel"] = self.channel
        metadata["userId"] = self.user_id
        if self.chat_id:
            metadata["chatId"] = self.chat_id
        if self.message_id:
            metadata["messageId"] = self.message_id
        return metadata


@dataclass(frozen=True)
class AgentContext:
    channel: str
    user_id: str | None = None
    chat_id: str | None = None
    message_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AgentMetadata:
    agents_used: list[str]
    total_steps: int
    quality_score: float
    processing_time: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "agentsUsed": list(self.agents_used),
            "totalSteps": self.total_steps,
            "qualityScore": self.quality_score,
            "processingTime": self.processing_time,
        }


@dataclass(frozen=True)
class OrchestrationResult:
    final_response: str
    agents_used: list[str]
    total_steps: int
    quality_score: float
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ProcessClassifiedMessageResult:
    response: str
    parsed: ParsedTask | None
    model: str


@dataclass(frozen=True)
class AgentProcessingResult:
    response: str
    parsed: ParsedTask | None
    model: str
    processing_mode: ProcessingMode | None = None
    agent_metadata: AgentMetadata | None = None


def serialize_context(messages: list[ContextMessage]) -> str:
    return json.dumps([message.to_dict() for message in messages], ensure_ascii=False)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _unit_interval(payload: dict[str, Any], key: str, *, required: bool) -> float | None:
    value = payload.get(key)
    if value is None:
        if required:
            raise SchemaValidationError(f"{key} is required")
        return None
    if not _is_number(value) or not 0.0 <= float(value) <= 1.0:
        raise SchemaValidationError(f"{key} must be a number in [0, 1]")
    return float(value)


def message_type_from_payload(payload: Any) -> MessageTypeResult:
    if not isinstance(payload, dict):
        raise SchemaValidationError("message type payload must be an object")
    message_type = payload.get("type")
    if message_type not in MESSAGE_TYPES:
        raise SchemaValidationError(f"type must be one of {sorted(MESSAGE_TYPES)}")
    subtype = payload.get("subtype")
    if subtype is not None and not isinstance(subtype, str):
        raise SchemaValidationError("subtype must be a string or null")
    need_logging = payload.get("need_logging")
    if not isinstance(need_logging, bool):
        raise SchemaValidationError("need_logging must be a boolean")
    confidence = _unit_interval(payload, "confidence", required=True)
    return MessageTypeResult(
        type=message_type,
        subtype=subtype or None,
        confidence=float(confidence or 0.0),
        need_logging=need_logging,
    )


def relevance_from_payload(payload: Any) -> RelevanceResult:
    if not isinstance(payload, dict):
        raise SchemaValidationError("relevance payload must be an object")
    relevant = payload.get("relevant")
    if not isinstance(relevant, bool):
        raise SchemaValidationError("relevant must be a boolean")
    category = payload.get("category")
    if category is not None and category not in RELEVANCE_CATEGORIES:
        raise SchemaValidationError(f"category must be one of {sorted(RELEVANCE_CATEGORIES)}")
    return RelevanceResult(
        relevant=relevant,
        score=_unit_interval(payload, "score", required=False),
        category=category,
    )


def classification_from_payload(payload: Any) -> MessageClassificationResult:
    if not isinstance(payload, dict):
        raise SchemaValidationError("classification payload must be an object")
    return MessageClassificationResult(
        message_type=message_type_from_payload(payload.get("messageType")),
        relevance=relevance_from_payload(payload.get("relevance")),
    )


def is_parsed_task(value: Any) -> bool:
    return (
        isinstance(value, dict)
        and isinstance(value.get("action"), str)
        and isinstance(value.get("object"), str)
    )
