from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any

import httpx

from synoro.infra.llm.base import trim_error_body

LOGGER = logging.getLogger(__name__)

_VARIABLE_PATTERN = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


class PromptStoreError(RuntimeError):
    """Raised when the remote prompt store cannot return a usable prompt."""


@dataclass(frozen=True)
class PromptTemplate:
    name: str
    text: str
    version: int | None = None

    def compile(self, **variables: Any) -> str:
        def _replace(match: re.Match[str]) -> str:
            key = match.group(1)
            if key not in variables:
                return match.group(0)
            return str(variables[key])

        return _VARIABLE_PATTERN.sub(_replace, self.text)


class LangfusePromptClient:
    """Reads text prompts from the Langfuse public API."""

    def __init__(
        self,
        *,
        public_key: str,
        secret_key: str,
        base_url: str = "https://cloud.langfuse.com",
        timeout_seconds: float = 5.0,
        label: str = "production",
    ) -> None:
        self.public_key = public_key
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.label = label

    async def get_prompt(self, name: str) -> PromptTemplate:
        url = f"{self.base_url}/api/public/v2/prompts/{name}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.get(
                    url,
                    params={"label": self.label},
                    auth=(self.public_key, self.secret_key),
                )
        except httpx.RequestError as exc:
            raise PromptStoreError(f"Langfuse request failed for {name}: {exc}") from exc

        if response.status_code // 100 != 2:
            raise PromptStoreError(
                f"Langfuse API error {response.status_code} for {name}: {trim_error_body(response.text)}"
            )

        data = response.json()
        prompt = data.get("prompt")
        if isinstance(prompt, list):
            # chat prompts: join message contents in order
            prompt = "\n\n".join(
                str(item.get("content", "")) for item in prompt if isinstance(item, dict)
            )
        if not isinstance(prompt, str):
            raise PromptStoreError(f"Langfuse returned no text prompt for {name}")
        version = data.get("version")
        return PromptTemplate(name=name, text=prompt, version=version if isinstance(version, int) else None)
