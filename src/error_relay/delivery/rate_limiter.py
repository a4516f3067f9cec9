from __future__ import annotations

from dataclasses import dataclass
from time import time
from typing import Callable, List, Optional, Tuple


@dataclass(frozen=True)
class RateLimitConfig:
    max_requests: int = 60
    window_ms: int = 60_000
    skip_successful: bool = True  # only failed attempts count against the window

    def __post_init__(self):
        if self.max_requests <= 0:
            raise ValueError("max_requests must be > 0")
        if self.window_ms <= 0:
            raise ValueError("window_ms must be > 0")


@dataclass(frozen=True)
class RateLimitStats:
    remaining: int
    reset_time_ms: float
    current_requests: int


class RateLimiter:
    """Sliding-window gate on outbound transport attempts.

    Independent of (and downstream from) the quota: a report that passed
    admission can still be deferred here.
    """

    def __init__(
        self, config: Optional[RateLimitConfig] = None, *, clock: Callable[[], float] = time
    ):
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._window: List[Tuple[float, bool]] = []  # (epoch ms, success)

    def is_allowed(self) -> bool:
        self._purge()
        return len(self._relevant()) < self.config.max_requests

    def record_outcome(self, success: bool = True) -> None:
        self._purge()
        self._window.append((self._now_ms(), success))

    def remaining(self) -> int:
        self._purge()
        return max(0, self.config.max_requests - len(self._relevant()))

    def request_count(self) -> int:
        self._purge()
        return len(self._window)

    def reset_time(self) -> float:
        """Epoch ms at which the oldest entry leaves the window (0 if empty)."""
        self._purge()
        if not self._window:
            return 0.0
        return self._window[0][0] + self.config.window_ms

    def reset(self) -> None:
        self._window = []

    def stats(self) -> RateLimitStats:
        return RateLimitStats(
            remaining=self.remaining(),
            reset_time_ms=self.reset_time(),
            current_requests=self.request_count(),
        )

    def _relevant(self) -> List[Tuple[float, bool]]:
        if self.config.skip_successful:
            return [e for e in self._window if not e[1]]
        return self._window

    def _purge(self) -> None:
        cutoff = self._now_ms() - self.config.window_ms
        self._window = [e for e in self._window if e[0] > cutoff]

    def _now_ms(self) -> float:
        return self._clock() * 1000.0
