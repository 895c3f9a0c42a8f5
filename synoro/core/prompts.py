from __future__ import annotations

import logging
from typing import Final, Protocol

from synoro.infra.prompt_store import PromptTemplate

LOGGER = logging.getLogger(__name__)

ASSISTANT: Final[str] = "assistant"
CLASSIFIER_RELEVANCE: Final[str] = "classifier.relevance"
CLASSIFIER_MESSAGE_TYPE: Final[str] = "classifier.message-type"
MESSAGE_CLASSIFIER: Final[str] = "message-classifier"
PARSER_TASK: Final[str] = "parser.task"
QUALITY_EVALUATOR: Final[str] = "agents.quality-evaluator"

DEFAULT_PROMPT_KEY: Final[str] = ASSISTANT

_ASSISTANT_PROMPT = (
    "Ты Synoro, дружелюбный помощник по домашним делам. Ты помогаешь записывать покупки, "
    "расходы, задачи и другие события, отвечаешь на вопросы и даёшь короткие практичные "
    "советы. Отвечай по-русски, кратко и по делу. Не выдумывай данных пользователя."
)

_RELEVANCE_PROMPT = (
    "Определи, относится ли сообщение к ведению быта, покупок, расходов, задач или к "
    "общению с ассистентом. Верни только JSON без пояснений:\n"
    '{"relevant": true|false, "score": число от 0 до 1, '
    '"category": "relevant"|"irrelevant"|"spam"}'
)

_MESSAGE_TYPE_PROMPT = (
    "Классифицируй сообщение пользователя.\n"
    "question: вопрос к ассистенту; event: факт для записи (покупка, расход, задача, событие); "
    "chat: приветствие или разговор; irrelevant: спам или бессмыслица.\n"
    "subtype для question: about_bot, data_query или general.\n"
    "Верни только JSON без пояснений:\n"
    '{"type": "question"|"event"|"chat"|"irrelevant", "subtype": строка или null, '
    '"confidence": число от 0 до 1, "need_logging": true|false}'
)

_MESSAGE_CLASSIFIER_PROMPT = (
    "Классифицируй сообщение пользователя с учётом контекста беседы.\n"
    "messageType.type: question, event, chat или irrelevant; "
    "subtype для question: about_bot, data_query или general.\n"
    "relevance: относится ли сообщение к быту, покупкам, расходам, задачам или общению.\n"
    "Верни только JSON без пояснений:\n"
    '{"messageType": {"type": ..., "subtype": ..., "confidence": 0..1, "need_logging": true|false}, '
    '"relevance": {"relevant": true|false, "score": 0..1, "category": "relevant"|"irrelevant"|"spam"}}'
)

_PARSER_TASK_PROMPT = (
    "Извлеки из текста действие и объект. Пример: «Купил хлеб за 50 рублей» → "
    'action "купил", object "хлеб".\n'
    'Верни только JSON: {"action": строка, "object": строка, "confidence": число от 0 до 1}'
)

_QUALITY_EVALUATOR_PROMPT = (
    "Оцени качество ответа ассистента на сообщение пользователя: полнота, точность, "
    "польза и тон. Верни только JSON: {\"score\": число от 0 до 1, \"feedback\": строка}"
)

LOCAL_PROMPTS: Final[dict[str, str]] = {
    ASSISTANT: _ASSISTANT_PROMPT,
    CLASSIFIER_RELEVANCE: _RELEVANCE_PROMPT,
    CLASSIFIER_MESSAGE_TYPE: _MESSAGE_TYPE_PROMPT,
    MESSAGE_CLASSIFIER: _MESSAGE_CLASSIFIER_PROMPT,
    PARSER_TASK: _PARSER_TASK_PROMPT,
    QUALITY_EVALUATOR: _QUALITY_EVALUATOR_PROMPT,
}


def get_local_prompt(key: str) -> str:
    return LOCAL_PROMPTS.get(key, LOCAL_PROMPTS[DEFAULT_PROMPT_KEY])


class PromptSource(Protocol):
    async def get_prompt(self, name: str) -> PromptTemplate:
        ...


class PromptRegistry:
    """System prompts by key: remote store first, local registry as fallback.

    Values are cached for the lifetime of the registry and never invalidated.
    Two concurrent first lookups of one key may both fetch; they write the
    same value.
    """

    def __init__(self, remote: PromptSource | None = None) -> None:
        self._remote = remote
        self._cache: dict[str, str] = {}

    async def get_system_prompt(self, key: str = DEFAULT_PROMPT_KEY) -> str:
        cached = self._cache.get(key)
        if cached:
            return cached

        if self._remote is not None:
            try:
                template = await self._remote.get_prompt(key)
                value = template.compile().strip()
            except Exception as exc:
                LOGGER.warning("Prompt store lookup failed key=%s error=%s; using local prompt", key, exc)
            else:
                if value:
                    self._cache[key] = value
                    return value
                LOGGER.warning("Prompt store returned empty prompt key=%s; using local prompt", key)

        local = get_local_prompt(key).strip()
        self._cache[key] = local
        return local
