from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from functools import wraps

from telegram import Update
from telegram.constants import ChatAction
from telegram.ext import ContextTypes

from synoro.core.agent_processor import AgentMessageProcessor, ProcessingOptions
from synoro.core.classifier import Classifier
from synoro.core.models import AgentProcessingResult, ContextMessage, MessageContext, Telemetry
from synoro.core.spam import is_obvious_spam, should_log
from synoro.infra.config import Settings
from synoro.infra.request_context import (
    RequestContext,
    add_trace,
    elapsed_ms,
    log_error,
    log_event,
    log_request,
    start_request,
)

LOGGER = logging.getLogger(__name__)

MAX_TG_MESSAGE = 4096
HISTORY_LIMIT = 10
SPAM_REPLY = "Похоже на спам или бессодержательное сообщение. Отправьте, пожалуйста, более осмысленный текст."
ERROR_REPLY = "Не удалось обработать сообщение. Попробуйте ещё раз позже."

Handler = Callable[[Update, ContextTypes.DEFAULT_TYPE, RequestContext], Awaitable[None]]


def _get_settings(context: ContextTypes.DEFAULT_TYPE) -> Settings:
    return context.application.bot_data["settings"]


def _get_classifier(context: ContextTypes.DEFAULT_TYPE) -> Classifier:
    return context.application.bot_data["classifier"]


def _get_processor(context: ContextTypes.DEFAULT_TYPE) -> AgentMessageProcessor:
    return context.application.bot_data["processor"]


def _get_processing_options(context: ContextTypes.DEFAULT_TYPE) -> ProcessingOptions:
    return context.application.bot_data.get("processing_options") or ProcessingOptions()


def _get_history(context: ContextTypes.DEFAULT_TYPE) -> dict[str, list[ContextMessage]]:
    return context.application.bot_data.setdefault("history", {})


def _get_history_totals(context: ContextTypes.DEFAULT_TYPE) -> dict[str, int]:
    return context.application.bot_data.setdefault("history_totals", {})


def _with_error_handling(handler: Handler) -> Callable[[Update, ContextTypes.DEFAULT_TYPE], Awaitable[None]]:
    @wraps(handler)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        request_context = start_request(update)
        try:
            await handler(update, context, request_context)
        except Exception as exc:
            log_error(LOGGER, request_context, component="handler", where=handler.__name__, exc=exc)
            if update.effective_message is not None:
                await update.effective_message.reply_text(ERROR_REPLY)
        finally:
            log_request(LOGGER, request_context)

    return wrapper


def truncate_reply(text: str, limit: int = MAX_TG_MESSAGE) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 1] + "…"


def _append_history(
    context: ContextTypes.DEFAULT_TYPE,
    chat_key: str,
    role: str,
    text: str,
) -> None:
    history = _get_history(context).setdefault(chat_key, [])
    history.append(
        ContextMessage(
            id=uuid.uuid4().hex,
            role=role,
            text=text,
            created_at=datetime.now(timezone.utc),
        )
    )
    del history[:-HISTORY_LIMIT]
    totals = _get_history_totals(context)
    totals[chat_key] = totals.get(chat_key, 0) + 1


def build_message_context(
    request_context: RequestContext,
    history: list[ContextMessage] | None = None,
    total_messages: int | None = None,
) -> MessageContext:
    metadata: dict[str, object] = {
        "correlationId": request_context.correlation_id,
        "timestamp": request_context.ts.isoformat(),
    }
    if total_messages:
        metadata["totalMessages"] = total_messages
    return MessageContext(
        channel="telegram",
        user_id=request_context.user_id,
        chat_id=request_context.chat_id,
        message_id=request_context.message_id,
        metadata=metadata,
        conversation_id=request_context.chat_id,
        context=list(history) if history else None,
    )


def _debug_suffix(result: AgentProcessingResult) -> str:
    meta = result.agent_metadata
    if meta is None:
        return ""
    return (
        f"\n\nDebug: {result.processing_mode} | {'→'.join(meta.agents_used)} | "
        f"Q:{meta.quality_score * 100:.0f}%"
    )


@_with_error_handling
async def start(update: Update, context: ContextTypes.DEFAULT_TYPE, request_context: RequestContext) -> None:
    if update.message is None:
        return
    await update.message.reply_text(
        "Привет! Я Synoro, помощник по домашним делам.\n"
        "Пиши покупки, расходы и задачи обычным текстом, я их запишу и подскажу совет.\n"
        "Можно задавать вопросы или попросить анализ и план. Команды: /help."
    )


@_with_error_handling
async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE, request_context: RequestContext) -> None:
    if update.message is None:
        return
    max_length = _get_settings(context).tg_message_max_length
    await update.message.reply_text(
        "Как пользоваться:\n"
        "• «Купил хлеб за 50 рублей» запишу как событие и дам совет.\n"
        "• «Что ты умеешь?» отвечу на вопрос.\n"
        "• «Сравни расходы за месяц и предложи стратегию» разберу подробнее.\n"
        f"Максимальная длина сообщения: {max_length} символов."
    )


@_with_error_handling
async def text_message(update: Update, context: ContextTypes.DEFAULT_TYPE, request_context: RequestContext) -> None:
    message = update.message
    if message is None or not message.text:
        return
    text = message.text.strip()
    if not text:
        return

    settings = _get_settings(context)
    if len(text) > settings.tg_message_max_length:
        request_context.status = "refused"
        await message.reply_text(
            f"Слишком длинное сообщение ({len(text)} символов). "
            f"Пожалуйста, сократите до {settings.tg_message_max_length}."
        )
        return
    if is_obvious_spam(text):
        request_context.status = "refused"
        await message.reply_text(SPAM_REPLY)
        return

    await message.reply_chat_action(ChatAction.TYPING)

    chat_key = request_context.chat_id or request_context.user_id
    history = _get_history(context).get(chat_key, [])
    message_context = build_message_context(
        request_context,
        history,
        _get_history_totals(context).get(chat_key),
    )

    classify_start = elapsed_ms(request_context.start_time)
    classification = await _get_classifier(context).classify_message(
        text,
        Telemetry(function_id="tg-classify-message", metadata=message_context.telemetry_metadata()),
    )
    add_trace(
        request_context,
        step="classify",
        component="classifier",
        name=classification.message_type.type,
        duration_ms=elapsed_ms(request_context.start_time) - classify_start,
    )
    if classification.relevance.category == "spam" and not classification.relevance.relevant:
        request_context.status = "refused"
        await message.reply_text(SPAM_REPLY)
        return

    result = await _get_processor(context).process_hybrid(
        text,
        classification.message_type,
        message_context,
        _get_processing_options(context),
    )
    add_trace(request_context, step="process", component="processor", name=result.processing_mode)

    reply = result.response
    if settings.env == "dev" and result.processing_mode == "agents":
        reply += _debug_suffix(result)
    await message.reply_text(truncate_reply(reply))

    _append_history(context, chat_key, "user", text)
    _append_history(context, chat_key, "assistant", result.response)
    log_event(
        LOGGER,
        request_context,
        component="handler",
        event="message.processed",
        processing_mode=result.processing_mode,
        model=result.model,
        message_type=classification.message_type.type,
        should_log=should_log(result.parsed),
        agent_metadata=result.agent_metadata.to_dict() if result.agent_metadata else None,
    )
