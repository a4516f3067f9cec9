"""Delivery pipeline

Report -> quota -> batch -> rate window -> breaker(retry(transport)) with:
- QuotaManager (daily / monthly / burst admission, midnight rollover)
- RateLimiter sliding window over transport attempts
- CircuitBreaker + RetryPolicy with jitter
- BatchManager with size/time flushing and payload splitting
- OfflineQueue (disk-backed JSON, bounded, per-entry retry budget)
- DeliveryOrchestrator wiring + periodic queue replay
- NotificationBus for degraded-path notices
"""

from .types import (
    T,
    Transport,
    Compressor,
    RelayError,
    CircuitOpenError,
    CallTimeoutError,
    RateLimitedError,
    BatchSendError,
)
from .quota import QuotaConfig, QuotaDecision, QuotaManager, QuotaStats
from .rate_limiter import RateLimitConfig, RateLimiter, RateLimitStats
from .policy import (
    RetryConfig,
    RetryPolicy,
    RetryStats,
    default_retry_classifier,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)
from .batch import BatchConfig, BatchManager, BatchStats, split_chunks
from .offline_queue import OfflineQueue, QueueConfig, QueueEntry, QueueStats
from .notifications import (
    DeliveryNotice,
    NotificationBus,
    NotificationSink,
    LoguruNotificationSink,
    default_notifications,
)
from .payloads import build_payload
from .orchestrator import DeliveryOrchestrator, DeliveryHealth

__all__ = [
    # types
    "T",
    "Transport",
    "Compressor",
    "RelayError",
    "CircuitOpenError",
    "CallTimeoutError",
    "RateLimitedError",
    "BatchSendError",
    "DeliveryHealth",
    # admission
    "QuotaConfig",
    "QuotaDecision",
    "QuotaManager",
    "QuotaStats",
    "RateLimitConfig",
    "RateLimiter",
    "RateLimitStats",
    # policies
    "RetryConfig",
    "RetryPolicy",
    "RetryStats",
    "default_retry_classifier",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    # runtime
    "BatchConfig",
    "BatchManager",
    "BatchStats",
    "split_chunks",
    "OfflineQueue",
    "QueueConfig",
    "QueueEntry",
    "QueueStats",
    "build_payload",
    "DeliveryOrchestrator",
    # notifications
    "DeliveryNotice",
    "NotificationBus",
    "NotificationSink",
    "LoguruNotificationSink",
    "default_notifications",
]
