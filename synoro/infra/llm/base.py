from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol


@dataclass(frozen=True)
class LLMAPIError(RuntimeError):
    status_code: int
    message: str

    def __str__(self) -> str:
        return self.message


class LLMClient(Protocol):
    api_key: str

    async def create_chat_completion(
        self,
        *,
        model: str,
        messages: list[dict[str, Any]],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> dict[str, Any]:
        ...


def extract_message_content(data: dict[str, Any]) -> str:
    choices = data.get("choices") or [{}]
    content = choices[0].get("message", {}).get("content", "")
    return content if isinstance(content, str) else ""


def trim_error_body(body: str, limit: int = 500) -> str:
    return body[:limit] + ("..." if len(body) > limit else "")
