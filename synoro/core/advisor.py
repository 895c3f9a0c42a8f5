from __future__ import annotations

from synoro.core import prompts
from synoro.core.context import parse_context_safely, render_conversation_history
from synoro.core.generation import TextGenerator
from synoro.core.models import MessageTypeResult, Telemetry
from synoro.core.prompts import PromptRegistry

ADVISE_TEMPERATURE = 0.4
ANSWER_TEMPERATURE = 0.6


class Advisor:
    """Free-text advice and conversational answers.

    Provider errors propagate to the caller.
    """

    def __init__(self, generator: TextGenerator, prompt_registry: PromptRegistry) -> None:
        self._generator = generator
        self._prompts = prompt_registry

    async def advise(self, text: str, telemetry: Telemetry | None = None) -> str:
        history = render_conversation_history(parse_context_safely(telemetry), "Контекст беседы:")
        prompt = (
            f'{history}Текущее событие: "{text}"\n\n'
            "Дай краткий полезный совет, учитывая контекст предыдущих сообщений и это событие."
        )
        return await self._complete(prompt, ADVISE_TEMPERATURE, telemetry, "ai-advise")

    async def answer_question(
        self,
        question: str,
        message_type: MessageTypeResult,
        telemetry: Telemetry | None = None,
    ) -> str:
        history = render_conversation_history(parse_context_safely(telemetry), "История беседы:")
        prompt = history + build_answer_framing(question, message_type.subtype)
        return await self._complete(prompt, ANSWER_TEMPERATURE, telemetry, "ai-answer-question")

    async def _complete(
        self,
        prompt: str,
        temperature: float,
        telemetry: Telemetry | None,
        default_function_id: str,
    ) -> str:
        system = await self._prompts.get_system_prompt(prompts.ASSISTANT)
        text = await self._generator.generate(
            system=system,
            prompt=prompt,
            temperature=temperature,
            telemetry=Telemetry(
                function_id=(telemetry.function_id if telemetry else None) or default_function_id,
                metadata=dict(telemetry.metadata) if telemetry else {},
            ),
        )
        return text.strip()


def build_answer_framing(question: str, subtype: str | None) -> str:
    if subtype == "about_bot":
        return (
            f'Пользователь спрашивает о тебе как о боте. Вопрос: "{question}"\n\n'
            "Ответь дружелюбно, расскажи о своих возможностях согласно системному промпту. "
            "Учитывай контекст предыдущих сообщений."
        )
    if subtype == "data_query":
        return (
            f'Пользователь спрашивает о своих данных/статистике. Вопрос: "{question}"\n\n'
            "Объясни, что для получения статистики нужно сначала накопить данные, записывая события. "
            "Предложи начать с записи покупок, задач или других событий. "
            "Учитывай контекст предыдущих сообщений."
        )
    if subtype == "general":
        return (
            f'Пользователь задает общий вопрос. Вопрос: "{question}"\n\n'
            "Ответь полезно и по возможности покажи, как Synoro может помочь в этой ситуации. "
            "Учитывай контекст предыдущих сообщений."
        )
    return (
        f'Текущее сообщение пользователя: "{question}"\n\n'
        "Ответь дружелюбно и полезно, учитывая контекст предыдущих сообщений. "
        "Поддерживай естественный диалог."
    )
