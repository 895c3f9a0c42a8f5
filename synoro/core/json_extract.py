from __future__ import annotations

import json
from typing import Any


def extract_first_json_object(text: str) -> str | None:
    """Return the first balanced top-level ``{...}`` substring of ``text``.

    Braces inside single- or double-quoted strings (escapes included) are not
    structural, so prose around the payload and braces in values are skipped.
    """
    depth = 0
    start = -1
    quote = ""
    escaped = False

    for index, ch in enumerate(text):
        if quote:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = ""
            continue

        if ch in ("\"", "'"):
            quote = ch
        elif ch == "{":
            if depth == 0:
                start = index
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                return text[start : index + 1]
    return None


def parse_json_object(text: str) -> dict[str, Any] | None:
    candidate = extract_first_json_object(text)
    if candidate is None:
        return None
    try:
        value = json.loads(candidate)
    except ValueError:
        return None
    return value if isinstance(value, dict) else None
