from __future__ import annotations

import traceback
from typing import Any, Callable, Dict, Optional

from loguru import logger

from error_relay.delivery import (
    CircuitBreaker,
    DeliveryOrchestrator,
    NotificationSink,
    OfflineQueue,
    QuotaManager,
    RateLimiter,
    RetryPolicy,
    Transport,
    default_notifications,
)
from error_relay.models import BreadcrumbLevel, Report, UserContext
from error_relay.settings import RelaySettings, get_settings

from .breadcrumbs import BreadcrumbTrail
from .compression import CompressionService
from .context import extract_request_data, response_status
from .sanitize import Sanitizer
from .transport import HttpTransport
from .utils import detect_commit_hash, server_data, utc_now_iso

BeforeSend = Callable[[Report], Optional[Report]]

_UNSET = object()


class ErrorReporter:
    """
    Host-facing entry point: turns exceptions and messages into reports and
    hands them to the delivery pipeline.

    Usage:

        async with ErrorReporter(RelaySettings(endpoint_url=..., project_name="api")) as reporter:
            try:
                ...
            except Exception as e:
                await reporter.capture_exception(e, context={"order_id": 42})

    Capture calls never raise; failures are reported through the
    notification sink.
    """

    def __init__(
        self,
        settings: Optional[RelaySettings] = None,
        *,
        transport: Optional[Transport] = None,
        before_send: Optional[BeforeSend] = None,
        sanitizer: Optional[Sanitizer] = None,
        notifications: Optional[NotificationSink] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.settings = settings or get_settings()
        s = self.settings

        self.notifications = notifications or default_notifications()
        self.before_send = before_send
        self.sanitizer = sanitizer or Sanitizer()
        self.breadcrumbs = BreadcrumbTrail(s.max_breadcrumbs)

        self._owns_transport = transport is None
        self.transport: Transport = transport or HttpTransport(
            s.endpoint_url, timeout_sec=s.timeout_sec
        )
        self.compression: Optional[CompressionService] = None
        if s.compression_enabled:
            self.compression = CompressionService(s.compression_threshold, s.compression_level)

        quota_cfg = s.quota_config()
        rate_cfg = s.rate_limit_config()
        queue_cfg = s.queue_config()
        self.pipeline = DeliveryOrchestrator(
            self.transport,
            quota=QuotaManager(quota_cfg) if quota_cfg else None,
            rate_limiter=RateLimiter(rate_cfg) if rate_cfg else None,
            circuit_breaker=CircuitBreaker.from_config(s.breaker_config()),
            retry_policy=retry_policy or RetryPolicy.from_config(s.retry_config()),
            batch_config=s.batch_config(),
            offline_queue=(
                OfflineQueue(queue_cfg, notifications=self.notifications) if queue_cfg else None
            ),
            compressor=self.compression,
            notifications=self.notifications,
            drain_interval_sec=s.queue_drain_interval_sec,
        )

        self._user: Dict[str, Any] = {}
        self._commit_hash: Any = _UNSET

    @classmethod
    def from_env(cls, **kwargs) -> "ErrorReporter":
        return cls(get_settings(), **kwargs)

    # --------------- lifecycle

    async def start(self) -> None:
        await self.pipeline.start()

    async def stop(self) -> None:
        await self.pipeline.stop()
        if self._owns_transport and isinstance(self.transport, HttpTransport):
            await self.transport.aclose()

    async def __aenter__(self) -> "ErrorReporter":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

    # --------------- capture

    async def capture_exception(
        self,
        exc: BaseException,
        context: Optional[Dict[str, Any]] = None,
        request: Any = None,
    ) -> Optional[Report]:
        """Report an exception. Returns the report as submitted, or None if skipped."""
        if not self.settings.enabled:
            return None
        try:
            report = await self.build_report(exc, context=context, request=request)
            return await self._dispatch(report)
        except Exception as e:
            self.notifications.notify_error(e, stage="capture_exception")
            return None

    async def capture_message(
        self,
        message: str,
        level: BreadcrumbLevel = "info",
        context: Optional[Dict[str, Any]] = None,
    ) -> Optional[Report]:
        if not self.settings.enabled:
            return None
        try:
            caller = traceback.extract_stack(limit=2)[0]
            report = await self._new_report(
                message=message,
                exception_class="CapturedMessage",
                stack_trace="".join(traceback.format_stack(limit=8)[:-1]),
                file=caller.filename,
                line=caller.lineno or 0,
                context={**(context or {}), "level": level},
            )
            return await self._dispatch(report)
        except Exception as e:
            self.notifications.notify_error(e, stage="capture_message")
            return None

    async def build_report(
        self,
        exc: BaseException,
        *,
        context: Optional[Dict[str, Any]] = None,
        request: Any = None,
    ) -> Report:
        frames = traceback.extract_tb(exc.__traceback__) if exc.__traceback__ else []
        last = frames[-1] if frames else None
        extra: Dict[str, Any] = {}
        if request is not None:
            extra["request"] = extract_request_data(request)
            extra["http_status"] = response_status(request)
        return await self._new_report(
            message=str(exc) or type(exc).__name__,
            exception_class=type(exc).__name__,
            stack_trace="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
            file=last.filename if last else "unknown",
            line=(last.lineno or 0) if last else 0,
            context=dict(context or {}),
            **extra,
        )

    # --------------- host context

    def set_user(self, **fields: Any) -> None:
        """Merge identity fields (id, email, username, ip, ...) into the user context."""
        self._user.update({k: v for k, v in fields.items() if v is not None})

    def clear_user(self) -> None:
        self._user = {}

    def add_breadcrumb(
        self,
        message: str,
        category: str = "custom",
        level: BreadcrumbLevel = "info",
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.breadcrumbs.add(message, category, level, data)

    # --------------- operations

    async def flush(self) -> None:
        await self.pipeline.flush()

    async def flush_queue(self) -> None:
        await self.pipeline.process_queue()

    def clear_queue(self) -> None:
        if self.pipeline.offline_queue is not None:
            self.pipeline.offline_queue.clear()

    async def test_connection(self) -> bool:
        """Send one connection-test report straight to the transport (no pipeline)."""
        report = await self._new_report(
            message="Connection test",
            exception_class="ConnectionTest",
            context={"test": True},
        )
        try:
            await self.transport.send(report.to_payload())
        except Exception as e:
            logger.warning(f"Connection test failed: {type(e).__name__}: {e}")
            return False
        logger.info(f"Connection test to {self.settings.endpoint_url} succeeded")
        return True

    def stats(self) -> Dict[str, Any]:
        health = self.pipeline.health()
        batch = self.pipeline.batch
        return {
            "circuit_state": health.circuit_state,
            "failure_count": health.failure_count,
            "queue_size": health.queue_size,
            "pending_batch": health.pending_batch,
            "rate_limit_remaining": health.rate_limit_remaining,
            "quota": health.quota,
            "retry": health.retry,
            "batch": batch.stats if batch else None,
            "compression": self.compression.stats if self.compression else None,
            "breadcrumbs": len(self.breadcrumbs),
        }

    # --------------- internals

    async def _dispatch(self, report: Report) -> Optional[Report]:
        if self.before_send is not None:
            processed = self.before_send(report)
            if processed is None:
                logger.debug("Report dropped by before_send")
                return None
            report = processed
        report = self.sanitizer.sanitize(report)
        await self.pipeline.submit(report)
        return report

    async def _new_report(self, **fields: Any) -> Report:
        return Report(
            project=self.settings.project_name,
            environment=self.settings.environment,
            timestamp=utc_now_iso(),
            commit_hash=await self._get_commit_hash(),
            server=server_data(),
            breadcrumbs=self.breadcrumbs.items(),
            user=UserContext(**self._user) if self._user else None,
            **fields,
        )

    async def _get_commit_hash(self) -> Optional[str]:
        if self._commit_hash is _UNSET:
            self._commit_hash = (
                await detect_commit_hash() if self.settings.detect_commit_hash else None
            )
        return self._commit_hash
