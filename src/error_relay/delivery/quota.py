"""
Admission counters: daily, monthly and burst quotas.

Checked before any network work. A rejection is a routing decision for the
caller (queue or drop), never an exception.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from loguru import logger

Clock = Callable[[], datetime]


@dataclass(frozen=True)
class QuotaConfig:
    daily_limit: int = 1000
    monthly_limit: int = 10000
    payload_size_limit: int = 512_000  # bytes
    burst_limit: int = 10
    burst_window_ms: int = 60_000

    def __post_init__(self):
        if self.daily_limit <= 0 or self.monthly_limit <= 0:
            raise ValueError("daily_limit and monthly_limit must be > 0")
        if self.burst_limit <= 0:
            raise ValueError("burst_limit must be > 0")
        if self.burst_window_ms <= 0:
            raise ValueError("burst_window_ms must be > 0")


@dataclass(frozen=True)
class QuotaStats:
    daily_usage: int
    monthly_usage: int
    daily_remaining: int
    monthly_remaining: int
    burst_usage: int
    burst_remaining: int
    total_bytes: int
    is_over_quota: bool
    next_reset_time: datetime


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    stats: QuotaStats
    reason: Optional[str] = None


class QuotaManager:
    """Daily/monthly/burst admission control.

    Counter rollover is keyed on the local calendar date and month taken from
    ``clock``, not on elapsed time. It is applied lazily on every read and
    write, and by a self-rearming timer at local midnight once ``start()``
    has been called inside a running event loop.
    """

    def __init__(self, config: Optional[QuotaConfig] = None, *, clock: Clock = datetime.now):
        self.config = config or QuotaConfig()
        self._clock = clock

        self._daily_count = 0
        self._monthly_count = 0
        self._total_bytes = 0
        self._burst: List[float] = []  # epoch ms, ascending

        now = self._clock()
        self._last_reset_date = _date_key(now)
        self._last_reset_month = _month_key(now)

        self._timer: Optional[asyncio.TimerHandle] = None

    # --------------- admission

    def can_send(self, payload_size: int = 0) -> QuotaDecision:
        self._refresh()
        stats = self.stats()

        if payload_size > self.config.payload_size_limit:
            return QuotaDecision(
                False,
                stats,
                f"payload too large ({payload_size} > {self.config.payload_size_limit} bytes)",
            )
        if len(self._burst) >= self.config.burst_limit:
            return QuotaDecision(False, stats, "burst limit exceeded")
        if self._daily_count >= self.config.daily_limit:
            return QuotaDecision(False, stats, "daily quota exceeded")
        if self._monthly_count >= self.config.monthly_limit:
            return QuotaDecision(False, stats, "monthly quota exceeded")
        return QuotaDecision(True, stats)

    def record_usage(self, payload_size: int = 0) -> None:
        self._refresh()
        self._daily_count += 1
        self._monthly_count += 1
        self._total_bytes += payload_size
        self._burst.append(self._now_ms())

    # --------------- introspection

    def stats(self) -> QuotaStats:
        self._refresh()
        cfg = self.config
        burst = len(self._burst)
        return QuotaStats(
            daily_usage=self._daily_count,
            monthly_usage=self._monthly_count,
            daily_remaining=max(0, cfg.daily_limit - self._daily_count),
            monthly_remaining=max(0, cfg.monthly_limit - self._monthly_count),
            burst_usage=burst,
            burst_remaining=max(0, cfg.burst_limit - burst),
            total_bytes=self._total_bytes,
            is_over_quota=(
                self._daily_count >= cfg.daily_limit
                or self._monthly_count >= cfg.monthly_limit
                or burst >= cfg.burst_limit
            ),
            next_reset_time=_next_midnight(self._clock()),
        )

    def reset(self) -> None:
        self._daily_count = 0
        self._monthly_count = 0
        self._total_bytes = 0
        self._burst = []

    # --------------- midnight timer

    def start(self) -> None:
        """Arm the midnight rollover timer (requires a running loop)."""
        if self._timer is None:
            self._arm()

    def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _arm(self) -> None:
        now = self._clock()
        delay = max(0.0, (_next_midnight(now) - now).total_seconds())
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(delay, self._on_midnight)

    def _on_midnight(self) -> None:
        # Firing early or twice is harmless: rollover only happens on a key change.
        self._refresh()
        logger.debug(f"Quota midnight check: date={self._last_reset_date}")
        self._arm()

    # --------------- internals

    def _refresh(self) -> None:
        now = self._clock()
        date_key = _date_key(now)
        month_key = _month_key(now)

        if date_key != self._last_reset_date:
            logger.debug(f"Daily quota reset ({self._last_reset_date} -> {date_key})")
            self._daily_count = 0
            self._last_reset_date = date_key

        if month_key != self._last_reset_month:
            logger.debug(f"Monthly quota reset ({self._last_reset_month} -> {month_key})")
            self._monthly_count = 0
            self._total_bytes = 0
            self._last_reset_month = month_key

        cutoff = self._now_ms() - self.config.burst_window_ms
        self._burst = [ts for ts in self._burst if ts > cutoff]

    def _now_ms(self) -> float:
        return self._clock().timestamp() * 1000.0


def _date_key(dt: datetime) -> str:
    return dt.strftime("%Y-%m-%d")


def _month_key(dt: datetime) -> str:
    return dt.strftime("%Y-%m")


def _next_midnight(dt: datetime) -> datetime:
    tomorrow = dt + timedelta(days=1)
    return tomorrow.replace(hour=0, minute=0, second=0, microsecond=0)
