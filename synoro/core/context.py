"""Conversation history carried in telemetry metadata.

The history arrives as ``metadata["context"]``: a JSON array serialized by
whichever transport built the request. It is untrusted input, so every
stage below degrades to "no context" or "drop this item" instead of raising.
History is advisory and only used to enrich prompts.
"""

from __future__ import annotations

import json
import logging
import math
from datetime import datetime, timezone
from typing import Any

from synoro.core.models import ContextMessage, Telemetry

LOGGER = logging.getLogger(__name__)

MAX_CONTEXT_BYTES = 1024 * 1024
_CONVERSATIONAL_ROLES = {"user", "assistant"}
_ROLE_LABELS = {"user": "Пользователь", "assistant": "Ассистент"}
# epoch values above this are milliseconds
_EPOCH_MS_THRESHOLD = 100_000_000_000


def parse_context_safely(telemetry: Telemetry | None) -> list[ContextMessage]:
    if telemetry is None:
        return []
    raw = telemetry.metadata.get("context")
    if raw is None:
        return []

    if isinstance(raw, str):
        if len(raw.encode("utf-8")) > MAX_CONTEXT_BYTES:
            LOGGER.warning("Conversation context rejected: payload exceeds %s bytes", MAX_CONTEXT_BYTES)
            return []
        try:
            data = json.loads(raw)
        except ValueError as exc:
            LOGGER.warning("Conversation context rejected: invalid JSON (%s)", exc)
            return []
    else:
        data = raw

    if not isinstance(data, list):
        LOGGER.warning("Conversation context rejected: expected array, got %s", type(data).__name__)
        return []

    messages: list[ContextMessage] = []
    for index, item in enumerate(data):
        message, reason = _parse_item(item)
        if message is None:
            LOGGER.debug("Conversation context item dropped index=%s reason=%s", index, reason)
            continue
        messages.append(message)
    return messages


def _parse_item(item: Any) -> tuple[ContextMessage | None, str]:
    if not isinstance(item, dict):
        return None, "not_object"
    message_id = item.get("id")
    if not isinstance(message_id, str) or not message_id.strip():
        return None, "invalid_id"
    role = item.get("role")
    if not isinstance(role, str):
        return None, "invalid_role"
    role = role.strip().lower()
    if role not in _CONVERSATIONAL_ROLES:
        return None, f"role_{role or 'empty'}"
    content = item.get("content")
    text = content.get("text") if isinstance(content, dict) else None
    if not isinstance(text, str):
        return None, "invalid_content"
    return (
        ContextMessage(
            id=message_id,
            role=role,  # type: ignore[arg-type]
            text=text,
            created_at=normalize_created_at(item.get("createdAt")),
        ),
        "",
    )


def normalize_created_at(value: Any) -> datetime:
    """Coerce a datetime, ISO string or epoch number; fall back to now (UTC)."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return datetime.now(timezone.utc)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value):
        seconds = value / 1000 if abs(value) > _EPOCH_MS_THRESHOLD else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return datetime.now(timezone.utc)
    return datetime.now(timezone.utc)


def render_conversation_history(messages: list[ContextMessage], header: str) -> str:
    if not messages:
        return ""
    lines = [header]
    for index, message in enumerate(messages, start=1):
        lines.append(f"{index}. {_ROLE_LABELS.get(message.role, 'Ассистент')}: {message.text}")
    return "\n".join(lines) + "\n\n"
