"""Observability: OpenTelemetry tracing for LLM calls."""

from synoro.infra.observability.config import ObservabilityConfig, load_observability_config
from synoro.infra.observability.otel import initialize_otel, is_otel_enabled, trace_span

__all__ = [
    "ObservabilityConfig",
    "initialize_otel",
    "is_otel_enabled",
    "load_observability_config",
    "trace_span",
]
