"""OpenTelemetry tracing for outbound LLM calls."""

from __future__ import annotations

import logging
from contextlib import nullcontext
from typing import Any

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

from synoro.infra.observability.config import ObservabilityConfig

LOGGER = logging.getLogger(__name__)

_otel_enabled = False
_tracer: trace.Tracer | None = None


def initialize_otel(config: ObservabilityConfig) -> None:
    """Install a tracer provider when tracing is enabled."""
    global _otel_enabled, _tracer

    if not config.otel_enabled:
        LOGGER.debug("OpenTelemetry disabled")
        return

    provider = TracerProvider()
    if config.otel_exporter == "otlp" and config.otlp_endpoint:
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=config.otlp_endpoint)))
        LOGGER.info("OpenTelemetry initialized with OTLP exporter: %s", config.otlp_endpoint)
    else:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        LOGGER.info("OpenTelemetry initialized with console exporter")
    trace.set_tracer_provider(provider)
    _tracer = trace.get_tracer("synoro")
    _otel_enabled = True


def is_otel_enabled() -> bool:
    return _otel_enabled


def span_attributes(function_id: str, metadata: dict[str, Any] | None) -> dict[str, Any]:
    """Flatten telemetry metadata into OTel-compatible attribute values."""
    attributes: dict[str, Any] = {"ai.telemetry.functionId": function_id}
    for key, value in (metadata or {}).items():
        if isinstance(value, (str, bool, int, float)):
            attributes[f"ai.telemetry.metadata.{key}"] = value
        elif value is not None:
            attributes[f"ai.telemetry.metadata.{key}"] = str(value)[:256]
    return attributes


def trace_span(name: str, attributes: dict[str, Any] | None = None) -> Any:
    if not _otel_enabled or _tracer is None:
        return nullcontext()
    return _tracer.start_as_current_span(name, attributes=attributes or {})
