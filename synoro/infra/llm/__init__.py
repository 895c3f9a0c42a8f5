from synoro.infra.llm.base import LLMAPIError, LLMClient
from synoro.infra.llm.moonshot import MoonshotClient
from synoro.infra.llm.openai_client import OpenAIClient

__all__ = ["LLMAPIError", "LLMClient", "MoonshotClient", "OpenAIClient"]
