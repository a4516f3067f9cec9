"""
Failure notification channel for the delivery pipeline.

Components never raise degraded-path conditions at the host; they report
them through a NotificationSink instead. The bus fans a notice out to many
sinks (logging, host callbacks, tests) with per-sink error isolation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from loguru import logger


class NoticeLevel(str, Enum):
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class DeliveryNotice:
    """Immutable record of a degraded-path event.

    Attributes:
        level: WARNING for recoverable conditions (queued, rate limited,
            persistence failure), ERROR when a report is lost
        message: Human readable summary
        error: The underlying exception, if any
        context: Extra structured fields (report id, reason, counts)
    """

    level: NoticeLevel
    message: str
    error: Optional[BaseException] = None
    context: Dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class NotificationSink(Protocol):
    """Receives degraded-path notices. Implementations must not block."""

    def notify_warning(self, message: str, **context: Any) -> None: ...

    def notify_error(self, error: BaseException, **context: Any) -> None: ...


class LoguruNotificationSink:
    """Default sink: writes notices to the loguru logger."""

    def notify_warning(self, message: str, **context: Any) -> None:
        logger.warning(f"error-relay: {message} {_fmt(context)}".rstrip())

    def notify_error(self, error: BaseException, **context: Any) -> None:
        logger.error(f"error-relay: {type(error).__name__}: {error} {_fmt(context)}".rstrip())


class NotificationBus:
    """Fan-out NotificationSink with error isolation.

    One subscriber's failure does not affect others. Also keeps the last
    ``history_size`` notices for health reporting.

    Example:
        bus = NotificationBus()
        bus.subscribe(LoguruNotificationSink())
        bus.notify_warning("queued for later", reason="rate_limited")
    """

    def __init__(self, history_size: int = 50) -> None:
        self._subs: list[NotificationSink] = []
        self._history: list[DeliveryNotice] = []
        self._history_size = history_size

    def subscribe(self, sink: NotificationSink) -> None:
        if sink not in self._subs:
            self._subs.append(sink)
            logger.debug(f"Notification sink added (total: {len(self._subs)})")

    def unsubscribe(self, sink: NotificationSink) -> None:
        """No-op if the sink is not subscribed."""
        try:
            self._subs.remove(sink)
            logger.debug(f"Notification sink removed (total: {len(self._subs)})")
        except ValueError:
            pass

    @property
    def subscriber_count(self) -> int:
        return len(self._subs)

    @property
    def history(self) -> list[DeliveryNotice]:
        return list(self._history)

    def notify_warning(self, message: str, **context: Any) -> None:
        self._record(DeliveryNotice(NoticeLevel.WARNING, message, None, context))
        for sink in list(self._subs):
            try:
                sink.notify_warning(message, **context)
            except Exception as exc:
                logger.debug(f"Notification sink error (ignored): {type(exc).__name__}: {exc}")

    def notify_error(self, error: BaseException, **context: Any) -> None:
        self._record(DeliveryNotice(NoticeLevel.ERROR, str(error), error, context))
        for sink in list(self._subs):
            try:
                sink.notify_error(error, **context)
            except Exception as exc:
                logger.debug(f"Notification sink error (ignored): {type(exc).__name__}: {exc}")

    def _record(self, notice: DeliveryNotice) -> None:
        self._history.append(notice)
        if len(self._history) > self._history_size:
            del self._history[: len(self._history) - self._history_size]


def default_notifications() -> NotificationBus:
    bus = NotificationBus()
    bus.subscribe(LoguruNotificationSink())
    return bus


def _fmt(context: Dict[str, Any]) -> str:
    return " ".join(f"{k}={v}" for k, v in context.items())
