from __future__ import annotations

import logging
import time
from typing import Any

from synoro.core.models import Telemetry
from synoro.infra.config import Settings
from synoro.infra.llm import LLMClient, MoonshotClient, OpenAIClient
from synoro.infra.observability.otel import span_attributes, trace_span
from synoro.infra.request_context import elapsed_ms, log_event
from synoro.infra.resilience import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitOpenError,
    RetryPolicy,
    TimeoutConfig,
    retry_async,
)

LOGGER = logging.getLogger(__name__)


class TextGenerator:
    """Single-prompt text generation on top of a chat completion client.

    Telemetry is attached to logs and trace spans only; it never changes the
    request sent to the provider.
    """

    def __init__(
        self,
        client: LLMClient,
        *,
        model: str,
        provider: str = "openai",
        timeouts: TimeoutConfig | None = None,
        retry_policy: RetryPolicy | None = None,
        circuit_breaker: CircuitBreaker | None = None,
    ) -> None:
        self._client = client
        self._model = model
        self._provider = provider
        self._timeouts = timeouts or TimeoutConfig()
        self._retry_policy = retry_policy or RetryPolicy()
        self._breaker = circuit_breaker or CircuitBreaker(
            name=f"llm:{provider}",
            config=CircuitBreakerConfig(),
        )

    @property
    def model(self) -> str:
        return self._model

    @property
    def provider(self) -> str:
        return self._provider

    async def generate(
        self,
        *,
        system: str,
        prompt: str,
        temperature: float,
        telemetry: Telemetry,
    ) -> str:
        function_id = telemetry.function_id or "ai-generate-text"
        metadata: dict[str, Any] = dict(telemetry.metadata)
        correlation_id = metadata.get("correlationId")
        trace_name = f"{self._provider}/{self._model}"

        if not self._breaker.allow_request():
            log_event(
                LOGGER,
                None,
                component="llm",
                event="circuit.short_circuit",
                status="error",
                correlation_id=correlation_id,
                name=trace_name,
                function_id=function_id,
            )
            raise CircuitOpenError(f"LLM circuit is open for {trace_name}")

        messages = [
            {"role": "system", "content": system},
            {"role": "user", "content": prompt},
        ]
        start_time = time.monotonic()
        with trace_span("ai.generateText", span_attributes(function_id, metadata)):
            log_event(
                LOGGER,
                None,
                component="llm",
                event="llm.call.start",
                correlation_id=correlation_id,
                function_id=function_id,
                model=self._model,
                provider=self._provider,
                temperature=temperature,
                prompt=prompt,
            )
            try:
                response = await retry_async(
                    lambda: self._client.create_chat_completion(
                        model=self._model,
                        messages=messages,
                        temperature=temperature,
                    ),
                    policy=self._retry_policy,
                    timeout_seconds=self._timeouts.llm_seconds,
                    name=trace_name,
                    correlation_id=correlation_id,
                )
            except Exception as exc:
                self._breaker.record_failure()
                log_event(
                    LOGGER,
                    None,
                    component="llm",
                    event="llm.call.error",
                    status="error",
                    duration_ms=elapsed_ms(start_time),
                    correlation_id=correlation_id,
                    function_id=function_id,
                    exc_type=type(exc).__name__,
                )
                raise

        self._breaker.record_success()
        text = str(response.get("content") or "").strip()
        log_event(
            LOGGER,
            None,
            component="llm",
            event="llm.call.done",
            duration_ms=elapsed_ms(start_time),
            correlation_id=correlation_id,
            function_id=function_id,
            model=self._model,
            response=text,
        )
        return text


def build_llm_client(settings: Settings) -> LLMClient:
    if settings.ai_provider == "moonshot":
        return MoonshotClient(
            api_key=settings.moonshot_api_key or "",
            model=settings.moonshot_advice_model,
            base_url=settings.moonshot_base_url,
            timeout_seconds=settings.llm_timeout_seconds,
            max_retries=0,
        )
    return OpenAIClient(
        api_key=settings.openai_api_key or "",
        model=settings.openai_advice_model,
        base_url=settings.openai_base_url,
        timeout_seconds=settings.llm_timeout_seconds,
        max_retries=0,
    )


def build_text_generator(settings: Settings) -> TextGenerator:
    return TextGenerator(
        build_llm_client(settings),
        model=settings.advice_model,
        provider=settings.ai_provider,
        # retry_async is the only retry layer; this bounds each attempt
        timeouts=TimeoutConfig(llm_seconds=settings.llm_timeout_seconds * 2),
    )
