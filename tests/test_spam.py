from __future__ import annotations

import pytest

from synoro.core.models import ParsedTask
from synoro.core.spam import is_obvious_spam, should_log


@pytest.mark.parametrize(
    "text",
    [
        "",
        "  ",
        "ок",
        "смотри http://a.example и https://b.example",
        "аааааааааааааа",
        "!!!!?????....,,,,",
        "🔥🔥🔥🔥🔥🔥🔥🔥🔥🔥🔥",
    ],
)
def test_obvious_spam(text: str) -> None:
    assert is_obvious_spam(text)


@pytest.mark.parametrize(
    "text",
    [
        "Купил хлеб за 50 рублей",
        "Что ты умеешь?",
        "Посмотри https://shop.example",
        "Ура!!",
    ],
)
def test_regular_messages_are_not_spam(text: str) -> None:
    assert not is_obvious_spam(text)


def test_should_log() -> None:
    assert should_log(ParsedTask(action="купил", object="хлеб"))
    assert not should_log(None)
