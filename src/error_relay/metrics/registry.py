"""
Prometheus metrics for the delivery pipeline.

All series live in the global REGISTRY; expose them with
``prometheus_client.start_http_server`` in the host application.
"""

from prometheus_client import Counter, Gauge, Histogram


REPORTS_TOTAL = Counter(
    "error_relay_reports_total",
    "Reports handled by the delivery pipeline, by outcome",
    ["outcome"],  # delivered | queued | rejected | dropped | replayed
)

TRANSPORT_ATTEMPTS_TOTAL = Counter(
    "error_relay_transport_attempts_total",
    "Outbound transport attempts, by status",
    ["status"],  # success | failure | circuit_open | rate_limited
)

SEND_LATENCY_SECONDS = Histogram(
    "error_relay_send_latency_seconds",
    "Latency of guarded sends (breaker + retries + transport)",
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30],
)

CIRCUIT_STATE = Gauge(
    "error_relay_circuit_state",
    "Circuit breaker state (0=closed, 1=half_open, 2=open)",
    ["breaker"],
)

OFFLINE_QUEUE_SIZE = Gauge(
    "error_relay_offline_queue_size",
    "Entries currently held in the offline queue",
)

BATCH_SIZE = Histogram(
    "error_relay_batch_size",
    "Reports per outbound batch request",
    buckets=[1, 2, 5, 10, 25, 50, 100, 250],
)


class MetricsRegistry:
    """Structured access to all error-relay metrics."""

    reports_total = REPORTS_TOTAL
    transport_attempts_total = TRANSPORT_ATTEMPTS_TOTAL
    send_latency_seconds = SEND_LATENCY_SECONDS
    circuit_state = CIRCUIT_STATE
    offline_queue_size = OFFLINE_QUEUE_SIZE
    batch_size = BATCH_SIZE


metrics_registry = MetricsRegistry()
