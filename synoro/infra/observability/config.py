from __future__ import annotations

import os
from dataclasses import dataclass


def _parse_bool_default_false(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class ObservabilityConfig:
    """Tracing flags. OFF by default."""

    otel_enabled: bool
    otel_exporter: str
    otlp_endpoint: str | None

    @classmethod
    def default(cls) -> ObservabilityConfig:
        return cls(otel_enabled=False, otel_exporter="console", otlp_endpoint=None)


def load_observability_config(env: dict[str, str] | None = None) -> ObservabilityConfig:
    source = env if env is not None else os.environ
    exporter = (source.get("OTEL_EXPORTER") or "console").strip().lower()
    if exporter not in {"console", "otlp"}:
        exporter = "console"
    return ObservabilityConfig(
        otel_enabled=_parse_bool_default_false(source.get("OTEL_ENABLED")),
        otel_exporter=exporter,
        otlp_endpoint=(source.get("OTEL_EXPORTER_OTLP_ENDPOINT") or "").strip() or None,
    )
