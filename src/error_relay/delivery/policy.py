"""
Retry and circuit-breaker policies for outbound delivery.

The orchestrator composes them as ``breaker.execute(retry(transport_call))``:
the breaker's call timeout bounds the whole retry sequence, and a failed
sequence counts as one breaker failure.
"""

from __future__ import annotations

import asyncio
import random
import re
from dataclasses import dataclass
from enum import Enum
from time import monotonic
from typing import Awaitable, Callable, Optional

from loguru import logger

from ..metrics.registry import CIRCUIT_STATE
from .types import AsyncOperation, CallTimeoutError, CircuitOpenError, T

RetryClassifier = Callable[[BaseException], bool]
RetryHook = Callable[[int, BaseException, float], None]

RETRYABLE_STATUS_CODES = frozenset({408, 429, 502, 503, 504})

_STATUS_RE = re.compile(r"HTTP (\d{3})")
_NETWORK_MARKERS = (
    "econnreset",
    "econnrefused",
    "etimedout",
    "enotfound",
    "connection reset",
    "connection refused",
    "timed out",
    "timeout",
    "temporarily unavailable",
    "temporary failure",
)


def status_code_of(exc: BaseException) -> Optional[int]:
    """HTTP status carried by an exception (attribute first, then message)."""
    code = getattr(exc, "status_code", None)
    if isinstance(code, int):
        return code
    m = _STATUS_RE.search(str(exc))
    return int(m.group(1)) if m else None


def default_retry_classifier(exc: BaseException) -> bool:
    """Network errors and 408/429/502/503/504 retry; every other HTTP status aborts."""
    if isinstance(exc, CircuitOpenError):
        return False
    status = status_code_of(exc)
    if status is not None:
        return status in RETRYABLE_STATUS_CODES
    if isinstance(exc, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True
    msg = str(exc).lower()
    return any(marker in msg for marker in _NETWORK_MARKERS)


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 3
    initial_backoff_ms: int = 1000
    backoff_multiplier: float = 2.0
    max_backoff_ms: int = 30_000
    jitter: bool = True

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_backoff_ms < 0 or self.max_backoff_ms < 0:
            raise ValueError("backoff values must be >= 0")


@dataclass
class RetryStats:
    total_attempts: int = 0
    successful_retries: int = 0  # succeeded after >= 1 retry
    failed_retries: int = 0  # exhausted every attempt
    completed_operations: int = 0

    @property
    def average_attempts(self) -> float:
        if not self.completed_operations:
            return 0.0
        return self.total_attempts / self.completed_operations


class RetryPolicy:
    """Bounded exponential backoff around a single async operation.

    Delay before attempt n (n >= 2) is
    ``min(initial_backoff_ms * backoff_multiplier ** (n - 2), max_backoff_ms)``,
    scaled by a uniform factor in [0.5, 1.0] when ``jitter`` is on.
    Errors rejected by ``classify_retryable`` abort immediately.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        initial_backoff_ms: int = 1000,
        max_backoff_ms: int = 30_000,
        backoff_multiplier: float = 2.0,
        jitter: bool = True,
        classify_retryable: Optional[RetryClassifier] = None,
        *,
        on_retry: Optional[RetryHook] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = RetryConfig(
            max_attempts=max_attempts,
            initial_backoff_ms=initial_backoff_ms,
            backoff_multiplier=backoff_multiplier,
            max_backoff_ms=max_backoff_ms,
            jitter=jitter,
        )
        self.classify_retryable: RetryClassifier = classify_retryable or default_retry_classifier
        self._on_retry = on_retry or _log_retry
        self._sleep = sleep
        self.stats = RetryStats()

    @classmethod
    def from_config(cls, config: RetryConfig, **kwargs) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            initial_backoff_ms=config.initial_backoff_ms,
            max_backoff_ms=config.max_backoff_ms,
            backoff_multiplier=config.backoff_multiplier,
            jitter=config.jitter,
            **kwargs,
        )

    @property
    def max_attempts(self) -> int:
        return self.config.max_attempts

    def next_backoff_ms(self, retry_number: int) -> float:
        """Backoff before the ``retry_number``-th retry (1-based)."""
        cfg = self.config
        delay = cfg.initial_backoff_ms * (cfg.backoff_multiplier ** max(0, retry_number - 1))
        delay = min(delay, cfg.max_backoff_ms)
        if cfg.jitter:
            delay *= random.uniform(0.5, 1.0)
        return delay

    async def execute_with_retry(self, op: AsyncOperation[T]) -> T:
        attempt = 0
        while True:
            attempt += 1
            self.stats.total_attempts += 1
            try:
                result = await op()
            except Exception as exc:
                if not self.classify_retryable(exc):
                    self.stats.completed_operations += 1
                    raise
                if attempt >= self.config.max_attempts:
                    self.stats.failed_retries += 1
                    self.stats.completed_operations += 1
                    raise
                delay_ms = self.next_backoff_ms(attempt)
                self._on_retry(attempt, exc, delay_ms)
                await self._sleep(delay_ms / 1000.0)
                continue

            if attempt > 1:
                self.stats.successful_retries += 1
            self.stats.completed_operations += 1
            return result

    def reset_stats(self) -> None:
        self.stats = RetryStats()


def _log_retry(attempt: int, exc: BaseException, delay_ms: float) -> None:
    logger.warning(
        f"Send failed (attempt {attempt}): {type(exc).__name__}: {exc}; "
        f"retrying in {delay_ms:.0f}ms"
    )


# ----------------------------------------------------------------- breaker


class CircuitState(str, Enum):
    CLOSED = "closed"
    HALF_OPEN = "half_open"
    OPEN = "open"


_STATE_VALUE = {CircuitState.CLOSED: 0, CircuitState.HALF_OPEN: 1, CircuitState.OPEN: 2}


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    reset_timeout_sec: float = 60.0
    call_timeout_sec: Optional[float] = 30.0

    def __post_init__(self):
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")


@dataclass(frozen=True)
class CircuitStats:
    state: str
    failure_count: int
    last_failure_time: float


class CircuitBreaker:
    """Fail-fast guard around a flaky endpoint.

    CLOSED -> OPEN after ``failure_threshold`` consecutive failures.
    OPEN -> HALF_OPEN once ``half_open_after_sec`` has elapsed since the last
    failure; exactly one trial call is admitted. The trial's success closes
    the circuit (failure count back to 0); its failure re-opens it.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        half_open_after_sec: float = 60.0,
        call_timeout_sec: Optional[float] = 30.0,
        *,
        name: str = "transport",
        clock: Callable[[], float] = monotonic,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self.failure_threshold = failure_threshold
        self.half_open_after_sec = half_open_after_sec
        self.call_timeout_sec = call_timeout_sec
        self.name = name
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failures = 0
        self._last_failure = 0.0
        self._trial_in_flight = False
        CIRCUIT_STATE.labels(breaker=name).set(0)

    @classmethod
    def from_config(cls, config: CircuitBreakerConfig, **kwargs) -> "CircuitBreaker":
        return cls(
            failure_threshold=config.failure_threshold,
            half_open_after_sec=config.reset_timeout_sec,
            call_timeout_sec=config.call_timeout_sec,
            **kwargs,
        )

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failures

    @property
    def last_failure_time(self) -> float:
        return self._last_failure

    async def allow(self) -> None:
        """Admit a call or raise CircuitOpenError."""
        if self._state is CircuitState.OPEN:
            if self._clock() - self._last_failure < self.half_open_after_sec:
                raise CircuitOpenError(f"circuit '{self.name}' is open")
            self._transition(CircuitState.HALF_OPEN)
            self._trial_in_flight = True
            return

        if self._state is CircuitState.HALF_OPEN:
            if self._trial_in_flight:
                raise CircuitOpenError(f"circuit '{self.name}' is half-open (trial in flight)")
            self._trial_in_flight = True

    async def on_success(self) -> None:
        self._trial_in_flight = False
        self._failures = 0
        if self._state is not CircuitState.CLOSED:
            self._transition(CircuitState.CLOSED)

    async def on_failure(self) -> None:
        self._trial_in_flight = False
        self._failures += 1
        self._last_failure = self._clock()
        if self._state is CircuitState.HALF_OPEN or self._failures >= self.failure_threshold:
            if self._state is not CircuitState.OPEN:
                self._transition(CircuitState.OPEN)

    async def execute(self, fn: AsyncOperation[T]) -> T:
        """Run ``fn`` under the breaker and its per-call timeout."""
        await self.allow()

        task = asyncio.ensure_future(fn())
        try:
            done, _ = await asyncio.wait({task}, timeout=self.call_timeout_sec)
        except BaseException:
            task.cancel()
            self._abandon_trial()
            raise

        if not done:
            task.cancel()
            await self.on_failure()
            raise CallTimeoutError(
                f"call through circuit '{self.name}' exceeded {self.call_timeout_sec}s"
            )

        exc = task.exception()
        if exc is not None:
            await self.on_failure()
            raise exc

        await self.on_success()
        return task.result()

    def _abandon_trial(self) -> None:
        """A half-open trial ended without an outcome: reopen and restart the timeout."""
        if not self._trial_in_flight:
            return
        self._trial_in_flight = False
        self._last_failure = self._clock()
        if self._state is CircuitState.HALF_OPEN:
            self._transition(CircuitState.OPEN)

    def reset(self) -> None:
        self._failures = 0
        self._last_failure = 0.0
        self._trial_in_flight = False
        self._transition(CircuitState.CLOSED)

    def stats(self) -> CircuitStats:
        return CircuitStats(self._state.value, self._failures, self._last_failure)

    def _transition(self, new: CircuitState) -> None:
        if new is self._state:
            return
        logger.info(f"Circuit '{self.name}': {self._state.value} -> {new.value}")
        self._state = new
        CIRCUIT_STATE.labels(breaker=self.name).set(_STATE_VALUE[new])
