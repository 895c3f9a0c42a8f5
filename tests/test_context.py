from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

from synoro.core.context import (
    MAX_CONTEXT_BYTES,
    normalize_created_at,
    parse_context_safely,
    render_conversation_history,
)
from synoro.core.models import ContextMessage, Telemetry


def _telemetry(context: object) -> Telemetry:
    return Telemetry(function_id="test", metadata={"context": context})


def _item(role: str = "user", text: str = "Привет", created_at: object = "2024-05-01T10:00:00Z") -> dict:
    return {"id": f"m-{role}", "role": role, "content": {"text": text}, "createdAt": created_at}


def test_missing_context_yields_empty_list() -> None:
    assert parse_context_safely(None) == []
    assert parse_context_safely(Telemetry(function_id="x")) == []


def test_oversized_context_is_rejected() -> None:
    payload = json.dumps([_item(text="a" * (2 * 1024 * 1024))])
    assert len(payload) > MAX_CONTEXT_BYTES

    assert parse_context_safely(_telemetry(payload)) == []


def test_invalid_json_yields_empty_list() -> None:
    assert parse_context_safely(_telemetry("[{not json")) == []


def test_non_array_yields_empty_list() -> None:
    assert parse_context_safely(_telemetry(json.dumps({"id": "x"}))) == []


def test_system_role_is_dropped() -> None:
    payload = json.dumps([_item("user", "Купил хлеб"), _item("system", "secret instructions")])

    messages = parse_context_safely(_telemetry(payload))

    assert len(messages) == 1
    assert messages[0].role == "user"
    assert messages[0].text == "Купил хлеб"


def test_role_is_trimmed_and_lowercased() -> None:
    payload = json.dumps([_item(" Assistant ", "Записал")])

    messages = parse_context_safely(_telemetry(payload))

    assert [message.role for message in messages] == ["assistant"]


def test_invalid_items_are_dropped_individually() -> None:
    payload = json.dumps(
        [
            "plain string",
            {"id": "1", "role": "user"},
            {"role": "user", "content": {"text": "no id"}},
            _item("user", "valid"),
        ]
    )

    messages = parse_context_safely(_telemetry(payload))

    assert [message.text for message in messages] == ["valid"]


def test_unparseable_created_at_falls_back_to_now() -> None:
    payload = json.dumps([_item(created_at="not-a-date")])

    messages = parse_context_safely(_telemetry(payload))

    assert len(messages) == 1
    assert abs(datetime.now(timezone.utc) - messages[0].created_at) < timedelta(seconds=5)


def test_parsing_is_idempotent_and_does_not_mutate_input() -> None:
    raw = [_item("user", "Привет"), _item("assistant", "Здравствуйте")]
    telemetry = _telemetry(json.dumps(raw))
    before = dict(telemetry.metadata)

    first = parse_context_safely(telemetry)
    second = parse_context_safely(telemetry)

    assert first == second
    assert telemetry.metadata == before


def test_decoded_list_is_accepted() -> None:
    messages = parse_context_safely(_telemetry([_item("user", "из списка")]))

    assert [message.text for message in messages] == ["из списка"]


def test_normalize_created_at_accepts_epoch_seconds_and_milliseconds() -> None:
    expected = datetime(2024, 5, 1, tzinfo=timezone.utc)
    seconds = expected.timestamp()

    assert normalize_created_at(seconds) == expected
    assert normalize_created_at(seconds * 1000) == expected


def test_normalize_created_at_keeps_aware_datetime() -> None:
    value = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

    assert normalize_created_at(value) == value
    assert normalize_created_at("2024-01-02T03:04:05Z") == value


def test_render_conversation_history() -> None:
    moment = datetime(2024, 1, 1, tzinfo=timezone.utc)
    messages = [
        ContextMessage(id="1", role="user", text="Купил хлеб", created_at=moment),
        ContextMessage(id="2", role="assistant", text="Записал", created_at=moment),
    ]

    rendered = render_conversation_history(messages, "История беседы:")

    assert rendered == "История беседы:\n1. Пользователь: Купил хлеб\n2. Ассистент: Записал\n\n"
    assert render_conversation_history([], "История беседы:") == ""
