"""
Unit tests for metrics registration (light sanity checks).
"""

from prometheus_client import REGISTRY

from error_relay.metrics import REPORTS_TOTAL, metrics_registry


def test_registry_exposes_all_series():
    for attr in (
        "reports_total",
        "transport_attempts_total",
        "send_latency_seconds",
        "circuit_state",
        "offline_queue_size",
        "batch_size",
    ):
        assert getattr(metrics_registry, attr) is not None


def test_reports_counter_increments_by_outcome():
    before = REGISTRY.get_sample_value("error_relay_reports_total", {"outcome": "dropped"}) or 0.0
    REPORTS_TOTAL.labels(outcome="dropped").inc()
    after = REGISTRY.get_sample_value("error_relay_reports_total", {"outcome": "dropped"})
    assert after == before + 1
