from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from synoro.infra.llm.base import LLMAPIError, extract_message_content, trim_error_body

LOGGER = logging.getLogger(__name__)


class MoonshotAPIError(LLMAPIError):
    """Moonshot (Kimi) API error wrapper."""


class MoonshotClient:
    """Client for the OpenAI-compatible Moonshot chat completions API."""

    provider = "moonshot"

    def __init__(
        self,
        *,
        api_key: str,
        model: str = "kimi-k2-0711-preview",
        base_url: str = "https://api.moonshot.ai/v1",
        timeout_seconds: float = 30.0,
        max_retries: int = 2,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries

    async def create_chat_completion(
        self,
        *,
        model: str | None = None,
        messages: list[dict[str, Any]],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"model": model or self.model, "messages": messages}
        if temperature is not None:
            payload["temperature"] = temperature
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens

        url = f"{self.base_url}/chat/completions"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            response = None
            for attempt in range(self.max_retries + 1):
                try:
                    response = await client.post(url, json=payload, headers=headers)
                except httpx.RequestError as exc:
                    if attempt < self.max_retries:
                        LOGGER.warning(
                            "Moonshot request failed (attempt %s/%s): %s",
                            attempt + 1,
                            self.max_retries + 1,
                            exc,
                        )
                        await asyncio.sleep(1)
                        continue
                    raise RuntimeError(f"Moonshot request failed: {exc}") from exc

                if response.status_code >= 500 and attempt < self.max_retries:
                    LOGGER.warning(
                        "Moonshot API error %s (attempt %s/%s), retrying.",
                        response.status_code,
                        attempt + 1,
                        self.max_retries + 1,
                    )
                    await asyncio.sleep(1)
                    continue
                break

        if response is None:
            raise RuntimeError("Moonshot request failed")

        if response.status_code // 100 != 2:
            raise MoonshotAPIError(
                status_code=response.status_code,
                message=f"Moonshot API error {response.status_code}: {trim_error_body(response.text)}",
            )

        return {"content": extract_message_content(response.json())}
