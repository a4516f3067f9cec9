"""
Environment-driven settings for the reporter and its delivery pipeline.

Every field can be set through an ``ERROR_RELAY_<FIELD>`` environment variable
or a ``.env`` file. Components receive frozen config dataclasses built from
these settings rather than the settings object itself.
"""

from __future__ import annotations

import tempfile
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from .delivery.batch import BatchConfig
from .delivery.offline_queue import QueueConfig
from .delivery.policy import CircuitBreakerConfig, RetryConfig
from .delivery.quota import QuotaConfig
from .delivery.rate_limiter import RateLimitConfig


def default_queue_file() -> str:
    return str(Path(tempfile.gettempdir()) / "error-relay-queue.json")


class RelaySettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="ERROR_RELAY_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # --- reporter
    endpoint_url: str = "http://localhost:8080/errors"
    project_name: str = "default"
    environment: str = "production"
    enabled: bool = True
    timeout_sec: float = 5.0
    max_breadcrumbs: int = 50
    detect_commit_hash: bool = True

    # --- admission counters
    quota_enabled: bool = True
    quota_daily_limit: int = 1000
    quota_monthly_limit: int = 10000
    quota_payload_size_limit: int = 512_000
    quota_burst_limit: int = 10
    quota_burst_window_ms: int = 60_000

    # --- transport rate window
    rate_limit_enabled: bool = True
    rate_limit_max_requests: int = 60
    rate_limit_window_ms: int = 60_000
    rate_limit_skip_successful: bool = True

    # --- circuit breaker
    breaker_failure_threshold: int = 5
    breaker_reset_timeout_sec: float = 60.0
    breaker_call_timeout_sec: float = 30.0

    # --- retry
    retry_max_attempts: int = 3
    retry_initial_backoff_ms: int = 1000
    retry_backoff_multiplier: float = 2.0
    retry_max_backoff_ms: int = 30_000
    retry_jitter: bool = True

    # --- batching
    batch_enabled: bool = False
    batch_size: int = 10
    batch_timeout_ms: int = 5000
    batch_max_payload_size: int = 512_000

    # --- compression
    compression_enabled: bool = False
    compression_threshold: int = 1024
    compression_level: int = 6

    # --- offline queue
    queue_enabled: bool = True
    queue_file: str = default_queue_file()
    queue_max_size: int = 100
    queue_max_retries: int = 3
    queue_drain_interval_sec: float = 30.0

    def quota_config(self) -> Optional[QuotaConfig]:
        if not self.quota_enabled:
            return None
        return QuotaConfig(
            daily_limit=self.quota_daily_limit,
            monthly_limit=self.quota_monthly_limit,
            payload_size_limit=self.quota_payload_size_limit,
            burst_limit=self.quota_burst_limit,
            burst_window_ms=self.quota_burst_window_ms,
        )

    def rate_limit_config(self) -> Optional[RateLimitConfig]:
        if not self.rate_limit_enabled:
            return None
        return RateLimitConfig(
            max_requests=self.rate_limit_max_requests,
            window_ms=self.rate_limit_window_ms,
            skip_successful=self.rate_limit_skip_successful,
        )

    def breaker_config(self) -> CircuitBreakerConfig:
        return CircuitBreakerConfig(
            failure_threshold=self.breaker_failure_threshold,
            reset_timeout_sec=self.breaker_reset_timeout_sec,
            call_timeout_sec=self.breaker_call_timeout_sec,
        )

    def retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_attempts=self.retry_max_attempts,
            initial_backoff_ms=self.retry_initial_backoff_ms,
            backoff_multiplier=self.retry_backoff_multiplier,
            max_backoff_ms=self.retry_max_backoff_ms,
            jitter=self.retry_jitter,
        )

    def batch_config(self) -> Optional[BatchConfig]:
        if not self.batch_enabled:
            return None
        return BatchConfig(
            batch_size=self.batch_size,
            batch_timeout_ms=self.batch_timeout_ms,
            max_payload_size=self.batch_max_payload_size,
        )

    def queue_config(self) -> Optional[QueueConfig]:
        if not self.queue_enabled:
            return None
        return QueueConfig(
            queue_file=self.queue_file,
            max_queue_size=self.queue_max_size,
            max_retries=self.queue_max_retries,
        )


@lru_cache()
def get_settings() -> RelaySettings:
    return RelaySettings()
