from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

import httpx

from synoro.infra.llm.base import LLMAPIError
from synoro.infra.request_context import log_event

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class TimeoutConfig:
    llm_seconds: float = 30.0
    prompt_store_seconds: float = 5.0


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 2
    base_delay_ms: int = 250
    max_delay_ms: int = 2000
    jitter_ms: int = 200


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    window_seconds: float = 60.0
    cooldown_seconds: float = 30.0


class CircuitOpenError(RuntimeError):
    """Raised instead of calling a provider whose circuit is open."""


def _next_backoff_ms(policy: RetryPolicy, attempt: int) -> int:
    exp = min(policy.max_delay_ms, int(policy.base_delay_ms * (2 ** max(attempt - 1, 0))))
    jitter = int(random.random() * policy.jitter_ms) if policy.jitter_ms > 0 else 0
    return min(policy.max_delay_ms, exp + jitter)


def is_retryable_llm_error(exc: Exception) -> bool:
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, httpx.TransportError)):
        return True
    # clients wrap transport failures in RuntimeError
    if isinstance(exc.__cause__, httpx.TransportError):
        return True
    if isinstance(exc, LLMAPIError):
        return exc.status_code == 429 or exc.status_code >= 500
    return False


async def retry_async(
    func: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    timeout_seconds: float | None,
    name: str,
    is_retryable: Callable[[Exception], bool] = is_retryable_llm_error,
    correlation_id: str | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    attempts = max(1, policy.max_attempts)
    for attempt in range(1, attempts + 1):
        try:
            if timeout_seconds and timeout_seconds > 0:
                return await asyncio.wait_for(func(), timeout=timeout_seconds)
            return await func()
        except Exception as exc:
            if attempt >= attempts or not is_retryable(exc):
                raise
            wait_ms = _next_backoff_ms(policy, attempt)
            log_event(
                LOGGER,
                None,
                component="llm",
                event="retry.attempt",
                status="ok",
                correlation_id=correlation_id,
                name=name,
                attempt=attempt + 1,
                wait_ms=wait_ms,
                exc_type=type(exc).__name__,
            )
            await sleep(wait_ms / 1000)
    raise RuntimeError("retry_attempts_exhausted")


class CircuitBreaker:
    def __init__(
        self,
        *,
        name: str,
        config: CircuitBreakerConfig,
        time_fn: Callable[[], float] = time.monotonic,
    ) -> None:
        self._name = name
        self._config = config
        self._time_fn = time_fn
        self._state = "closed"
        self._opened_at: float | None = None
        self._half_open_in_flight = False
        self._failures: list[float] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def state(self) -> str:
        return self._state

    def allow_request(self) -> bool:
        now = self._time_fn()
        if self._state == "open":
            opened_at = self._opened_at if self._opened_at is not None else now
            if now - opened_at < self._config.cooldown_seconds:
                return False
            self._transition("half_open")
            self._half_open_in_flight = True
            return True
        if self._state == "half_open":
            if self._half_open_in_flight:
                return False
            self._half_open_in_flight = True
        return True

    def record_success(self) -> None:
        self._failures.clear()
        self._half_open_in_flight = False
        if self._state != "closed":
            self._opened_at = None
            self._transition("closed")

    def record_failure(self) -> None:
        now = self._time_fn()
        self._half_open_in_flight = False
        if self._state == "half_open":
            self._open(now)
            return
        window = self._config.window_seconds
        self._failures = [ts for ts in self._failures if window > 0 and ts >= now - window]
        self._failures.append(now)
        if len(self._failures) >= self._config.failure_threshold:
            self._open(now)

    def _open(self, now: float) -> None:
        self._opened_at = now
        self._failures.clear()
        self._transition("open")

    def _transition(self, state: str) -> None:
        LOGGER.info("circuit.%s name=%s", state, self._name)
        self._state = state
