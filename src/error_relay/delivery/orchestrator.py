from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from time import monotonic
from typing import Any, Mapping, Optional, Sequence

from loguru import logger

from ..metrics.registry import BATCH_SIZE, REPORTS_TOTAL, SEND_LATENCY_SECONDS, TRANSPORT_ATTEMPTS_TOTAL
from ..models import Report
from .batch import BatchConfig, BatchManager, report_size
from .notifications import NotificationSink, default_notifications
from .offline_queue import OfflineQueue
from .payloads import build_payload
from .policy import CircuitBreaker, CircuitState, RetryPolicy, RetryStats
from .quota import QuotaManager, QuotaStats
from .rate_limiter import RateLimiter
from .types import (
    BatchSendError,
    CircuitOpenError,
    Compressor,
    RateLimitedError,
    RelayError,
    Transport,
)


@dataclass(frozen=True)
class DeliveryHealth:
    circuit_state: str
    failure_count: int
    queue_size: int
    pending_batch: int
    rate_limit_remaining: Optional[int]
    quota: Optional[QuotaStats]
    retry: RetryStats
    replay_running: bool


class DeliveryOrchestrator:
    """
    Sequences admission, batching, rate limiting, breaker, retry and the
    offline queue for every report.

    Per report:
      quota -> (reject: queue) -> batch or direct send
    Per outbound request:
      rate window -> (reject: queue) -> breaker(retry(transport)) ->
      success: record outcome + usage | failure: record outcome + queue
    A background task replays the offline queue every ``drain_interval_sec``
    through breaker(retry(transport)) only; queued reports are not
    re-checked against quota or rate limits.

    ``submit()`` never raises. Degraded paths are reported through the
    notification sink.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        quota: Optional[QuotaManager] = None,
        rate_limiter: Optional[RateLimiter] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        retry_policy: Optional[RetryPolicy] = None,
        batch_config: Optional[BatchConfig] = None,
        offline_queue: Optional[OfflineQueue] = None,
        compressor: Optional[Compressor] = None,
        notifications: Optional[NotificationSink] = None,
        drain_interval_sec: float = 30.0,
    ):
        self._transport = transport
        self._quota = quota
        self._rate = rate_limiter
        self._breaker = circuit_breaker
        self._retry = retry_policy or RetryPolicy()
        self._queue = offline_queue
        self._compressor = compressor
        self._notify = notifications or default_notifications()
        self._drain_interval = drain_interval_sec

        self._batch: Optional[BatchManager] = None
        if batch_config is not None:
            self._batch = BatchManager(self._send_chunk, batch_config, on_error=self._salvage_batch)

        self._drain_task: Optional[asyncio.Task] = None
        self._started = False

    # --------------- lifecycle

    async def __aenter__(self) -> "DeliveryOrchestrator":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        if self._quota is not None:
            self._quota.start()
        if self._queue is not None and self._drain_interval > 0:
            self._drain_task = asyncio.create_task(self._drain_loop(), name="error-relay-drain")
        logger.info(
            f"Delivery pipeline started (batching={'on' if self._batch else 'off'}, "
            f"queue={'on' if self._queue else 'off'})"
        )

    async def stop(self, flush: bool = True) -> None:
        """Release timers; with ``flush`` make one last best-effort drain."""
        if self._drain_task is not None:
            self._drain_task.cancel()
            try:
                await self._drain_task
            except asyncio.CancelledError:
                pass
            self._drain_task = None

        if flush:
            try:
                if self._batch is not None:
                    await self._batch.close()
                await self.process_queue()
            except Exception as exc:
                self._notify.notify_warning("final flush failed", error=f"{type(exc).__name__}: {exc}")
        elif self._batch is not None:
            self._batch.clear()

        if self._quota is not None:
            self._quota.stop()
        self._started = False
        logger.info("Delivery pipeline stopped")

    # --------------- public API

    async def submit(self, report: Report) -> None:
        """Admit and deliver (or buffer, or queue) one report. Never raises."""
        try:
            if self._quota is not None:
                decision = self._quota.can_send(report_size(report))
                if not decision.allowed:
                    REPORTS_TOTAL.labels(outcome="rejected").inc()
                    self._fallback([report], f"admission rejected: {decision.reason}")
                    return

            if self._batch is not None:
                await self._batch.add(report)
            else:
                await self._deliver([report])
        except Exception as exc:
            logger.exception("Unexpected failure in delivery pipeline")
            self._notify.notify_error(exc, stage="submit")
            self._fallback([report], f"internal error: {type(exc).__name__}")

    async def flush(self) -> None:
        """Send any pending batch now, then drain the offline queue once."""
        if self._batch is not None:
            try:
                await self._batch.flush()
            except BatchSendError as exc:
                await self._salvage_batch(exc)
        await self.process_queue()

    async def process_queue(self) -> None:
        if self._queue is not None:
            await self._queue.process_queue(self._replay_one)

    def health(self) -> DeliveryHealth:
        breaker_state = self._breaker.state.value if self._breaker else CircuitState.CLOSED.value
        return DeliveryHealth(
            circuit_state=breaker_state,
            failure_count=self._breaker.failure_count if self._breaker else 0,
            queue_size=self._queue.size if self._queue else 0,
            pending_batch=len(self._batch.pending()) if self._batch else 0,
            rate_limit_remaining=self._rate.remaining() if self._rate else None,
            quota=self._quota.stats() if self._quota else None,
            retry=replace(self._retry.stats),
            replay_running=self._drain_task is not None and not self._drain_task.done(),
        )

    @property
    def quota(self) -> Optional[QuotaManager]:
        return self._quota

    @property
    def rate_limiter(self) -> Optional[RateLimiter]:
        return self._rate

    @property
    def circuit_breaker(self) -> Optional[CircuitBreaker]:
        return self._breaker

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry

    @property
    def offline_queue(self) -> Optional[OfflineQueue]:
        return self._queue

    @property
    def batch(self) -> Optional[BatchManager]:
        return self._batch

    # --------------- send path

    async def _deliver(self, reports: Sequence[Report]) -> None:
        try:
            await self._transmit(reports, batched=False)
        except Exception as exc:
            self._fallback(reports, f"{type(exc).__name__}: {exc}", exc)

    async def _send_chunk(self, reports: Sequence[Report]) -> None:
        BATCH_SIZE.observe(len(reports))
        await self._transmit(reports, batched=True)

    async def _transmit(self, reports: Sequence[Report], *, batched: bool) -> None:
        if self._rate is not None and not self._rate.is_allowed():
            TRANSPORT_ATTEMPTS_TOTAL.labels(status="rate_limited").inc()
            raise RateLimitedError("transport rate limit reached")

        payload = build_payload(reports, batched=batched, compressor=self._compressor)
        await self._guarded_send(payload)

        for r in reports:
            if self._quota is not None:
                self._quota.record_usage(report_size(r))
        REPORTS_TOTAL.labels(outcome="delivered").inc(len(reports))
        logger.debug(f"Delivered {len(reports)} report(s)")

    async def _replay_one(self, report: Report) -> None:
        payload = build_payload([report], batched=False, compressor=self._compressor)
        await self._guarded_send(payload)
        if self._quota is not None:
            self._quota.record_usage(report_size(report))

    async def _guarded_send(self, payload: Mapping[str, Any]) -> None:
        """breaker(retry(transport)) with outcome recorded on the rate window."""

        async def attempt() -> None:
            await self._transport.send(payload)

        async def with_retry() -> None:
            await self._retry.execute_with_retry(attempt)

        started = monotonic()
        try:
            if self._breaker is not None:
                await self._breaker.execute(with_retry)
            else:
                await with_retry()
        except CircuitOpenError:
            TRANSPORT_ATTEMPTS_TOTAL.labels(status="circuit_open").inc()
            self._record_outcome(False)
            raise
        except Exception:
            TRANSPORT_ATTEMPTS_TOTAL.labels(status="failure").inc()
            self._record_outcome(False)
            raise
        finally:
            SEND_LATENCY_SECONDS.observe(monotonic() - started)

        TRANSPORT_ATTEMPTS_TOTAL.labels(status="success").inc()
        self._record_outcome(True)

    def _record_outcome(self, success: bool) -> None:
        if self._rate is not None:
            self._rate.record_outcome(success)

    # --------------- salvage

    async def _salvage_batch(self, err: BatchSendError) -> None:
        self._fallback(err.unsent, f"{type(err.cause).__name__}: {err.cause}", err.cause)

    def _fallback(
        self, reports: Sequence[Report], reason: str, error: Optional[BaseException] = None
    ) -> None:
        if not reports:
            return
        if self._queue is None:
            REPORTS_TOTAL.labels(outcome="dropped").inc(len(reports))
            self._notify.notify_error(
                error or RelayError(reason),
                reason=reason,
                dropped=len(reports),
            )
            return

        for r in reports:
            self._queue.enqueue(r)
        REPORTS_TOTAL.labels(outcome="queued").inc(len(reports))
        self._notify.notify_warning(f"{reason}; queued for later", count=len(reports))

    async def _drain_loop(self) -> None:
        while True:
            await asyncio.sleep(self._drain_interval)
            try:
                await self.process_queue()
            except Exception as exc:
                self._notify.notify_warning(
                    "queue processing failed", error=f"{type(exc).__name__}: {exc}"
                )
