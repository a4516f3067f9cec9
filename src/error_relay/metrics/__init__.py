from .registry import (
    BATCH_SIZE,
    CIRCUIT_STATE,
    OFFLINE_QUEUE_SIZE,
    REPORTS_TOTAL,
    SEND_LATENCY_SECONDS,
    TRANSPORT_ATTEMPTS_TOTAL,
    MetricsRegistry,
    metrics_registry,
)

__all__ = [
    "BATCH_SIZE",
    "CIRCUIT_STATE",
    "OFFLINE_QUEUE_SIZE",
    "REPORTS_TOTAL",
    "SEND_LATENCY_SECONDS",
    "TRANSPORT_ATTEMPTS_TOTAL",
    "MetricsRegistry",
    "metrics_registry",
]
