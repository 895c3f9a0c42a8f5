from __future__ import annotations

import re
from typing import Any

_URL_PATTERN = re.compile(r"https?://", re.IGNORECASE)
_REPEAT_PATTERN = re.compile(r"(.)\1{9,}")


def _alnum_count(text: str) -> int:
    return sum(1 for ch in text if ch.isalnum())


def is_obvious_spam(text: str | None) -> bool:
    stripped = (text or "").strip()
    if len(stripped) < 3:
        return True
    if len(_URL_PATTERN.findall(stripped)) >= 2:
        return True
    if _REPEAT_PATTERN.search(stripped):
        return True
    # emoji/symbol-only messages
    if _alnum_count(stripped) < 2 and len(stripped) > 10:
        return True
    return False


def should_log(parsed: Any) -> bool:
    """Only messages that produced a structured task are logged as events."""
    return parsed is not None
