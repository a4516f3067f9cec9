"""
Unit tests for DeliveryOrchestrator routing.
"""

import asyncio

import pytest
from prometheus_client import REGISTRY

from error_relay.delivery import (
    BatchConfig,
    CircuitBreaker,
    DeliveryOrchestrator,
    OfflineQueue,
    QueueConfig,
    QuotaConfig,
    QuotaManager,
    RateLimitConfig,
    RateLimiter,
    RetryPolicy,
)
from error_relay.delivery.notifications import NoticeLevel

pytestmark = pytest.mark.timeout(10)


class AlwaysCompress:
    def should_compress(self, data):
        return True

    def compress_json(self, data):
        return "H4sI-fake"


def _reports_total(outcome):
    return REGISTRY.get_sample_value("error_relay_reports_total", {"outcome": outcome}) or 0.0


@pytest.fixture
def retry(fast_sleep):
    return RetryPolicy(max_attempts=2, initial_backoff_ms=1, jitter=False, sleep=fast_sleep)


@pytest.fixture
def queue(queue_file, bus):
    return OfflineQueue(QueueConfig(queue_file=queue_file), notifications=bus)


@pytest.mark.asyncio
async def test_direct_delivery_records_usage(transport, retry, bus, make_report):
    quota = QuotaManager(QuotaConfig(burst_limit=100))
    rate = RateLimiter(RateLimitConfig(max_requests=5, skip_successful=False))
    orch = DeliveryOrchestrator(
        transport, quota=quota, rate_limiter=rate, retry_policy=retry, notifications=bus
    )
    delivered_before = _reports_total("delivered")

    await orch.submit(make_report("hello"))

    assert len(transport.payloads) == 1
    assert transport.payloads[0]["message"] == "hello"
    assert quota.stats().daily_usage == 1
    assert rate.request_count() == 1
    assert _reports_total("delivered") == delivered_before + 1


@pytest.mark.asyncio
async def test_quota_rejection_queues_without_sending(transport, retry, queue, bus, make_report):
    quota = QuotaManager(QuotaConfig(daily_limit=1, burst_limit=100))
    orch = DeliveryOrchestrator(
        transport, quota=quota, retry_policy=retry, offline_queue=queue, notifications=bus
    )

    await orch.submit(make_report("first"))
    await orch.submit(make_report("second"))

    assert transport.calls == 1
    assert queue.size == 1
    assert queue.entries()[0].data["message"] == "second"
    assert any("daily quota exceeded" in n.message for n in bus.history)


@pytest.mark.asyncio
async def test_rate_window_rejection_queues(transport, retry, queue, bus, make_report):
    rate = RateLimiter(RateLimitConfig(max_requests=1, skip_successful=False))
    orch = DeliveryOrchestrator(
        transport, rate_limiter=rate, retry_policy=retry, offline_queue=queue, notifications=bus
    )

    await orch.submit(make_report("sent"))
    await orch.submit(make_report("deferred"))

    assert transport.calls == 1
    assert [e.data["message"] for e in queue.entries()] == ["deferred"]


@pytest.mark.asyncio
async def test_transport_failure_queues_after_retries(make_transport, retry, queue, bus, make_report):
    failing = make_transport(fail_with=ConnectionError("refused"))
    quota = QuotaManager(QuotaConfig(burst_limit=100))
    rate = RateLimiter(RateLimitConfig(max_requests=10))
    orch = DeliveryOrchestrator(
        failing,
        quota=quota,
        rate_limiter=rate,
        retry_policy=retry,
        offline_queue=queue,
        notifications=bus,
    )

    await orch.submit(make_report("lost?"))

    assert failing.calls == 2
    assert queue.size == 1
    assert quota.stats().daily_usage == 0
    assert rate.remaining() == 9


@pytest.mark.asyncio
async def test_failure_without_queue_notifies_error(make_transport, retry, bus, make_report):
    orch = DeliveryOrchestrator(
        make_transport(fail_with=ConnectionError("refused")), retry_policy=retry, notifications=bus
    )

    await orch.submit(make_report())

    errors = [n for n in bus.history if n.level is NoticeLevel.ERROR]
    assert len(errors) == 1
    assert isinstance(errors[0].error, ConnectionError)
    assert errors[0].context["dropped"] == 1


@pytest.mark.asyncio
async def test_submit_never_raises(make_transport, retry, queue, bus, make_report):
    orch = DeliveryOrchestrator(
        make_transport(fail_with=RuntimeError("bug in transport")),
        retry_policy=retry,
        offline_queue=queue,
        notifications=bus,
    )
    await orch.submit(make_report())
    assert queue.size == 1


@pytest.mark.asyncio
async def test_open_circuit_skips_transport(make_transport, retry, queue, bus, clock, make_report):
    failing = make_transport(fail_with=ConnectionError("refused"))
    breaker = CircuitBreaker(failure_threshold=2, half_open_after_sec=60, clock=clock)
    orch = DeliveryOrchestrator(
        failing, circuit_breaker=breaker, retry_policy=retry, offline_queue=queue, notifications=bus
    )

    await orch.submit(make_report("1"))
    await orch.submit(make_report("2"))
    assert breaker.state == "open"
    calls = failing.calls

    await orch.submit(make_report("3"))
    assert failing.calls == calls
    assert queue.size == 3
    assert orch.health().circuit_state == "open"


@pytest.mark.asyncio
async def test_batched_delivery_uses_batch_envelope(transport, retry, bus, make_report):
    orch = DeliveryOrchestrator(
        transport,
        retry_policy=retry,
        batch_config=BatchConfig(batch_size=2, batch_timeout_ms=10_000),
        notifications=bus,
    )
    await orch.submit(make_report("a"))
    assert transport.calls == 0
    assert orch.health().pending_batch == 1

    await orch.submit(make_report("b"))
    assert orch.health().pending_batch == 0
    await orch.batch.close()

    payload = transport.payloads[0]
    assert payload["type"] == "batch"
    assert payload["count"] == 2
    assert [e["message"] for e in payload["errors"]] == ["a", "b"]


@pytest.mark.asyncio
async def test_failed_batch_is_salvaged_into_queue(make_transport, retry, queue, bus, make_report):
    orch = DeliveryOrchestrator(
        make_transport(fail_with=ConnectionError("refused")),
        retry_policy=retry,
        batch_config=BatchConfig(batch_size=3, batch_timeout_ms=10_000),
        offline_queue=queue,
        notifications=bus,
    )
    for i in range(3):
        await orch.submit(make_report(f"r{i}"))
    await orch.batch.close()

    assert [e.data["message"] for e in queue.entries()] == ["r0", "r1", "r2"]


@pytest.mark.asyncio
async def test_large_payload_is_compressed(transport, retry, bus, make_report):
    orch = DeliveryOrchestrator(
        transport, retry_policy=retry, compressor=AlwaysCompress(), notifications=bus
    )
    await orch.submit(make_report())

    payload = transport.payloads[0]
    assert payload["compressed"] is True
    assert payload["data"] == "H4sI-fake"
    assert payload["metadata"]["compression"] == "gzip-base64"


@pytest.mark.asyncio
async def test_replay_skips_rate_window(transport, retry, queue, bus, make_report):
    rate = RateLimiter(RateLimitConfig(max_requests=1, skip_successful=False))
    rate.record_outcome(False)
    assert not rate.is_allowed()

    queue.enqueue(make_report("queued-1"))
    queue.enqueue(make_report("queued-2"))
    orch = DeliveryOrchestrator(
        transport, rate_limiter=rate, retry_policy=retry, offline_queue=queue, notifications=bus
    )

    await orch.process_queue()

    assert [p["message"] for p in transport.payloads] == ["queued-1", "queued-2"]
    assert queue.size == 0


@pytest.mark.asyncio
async def test_stop_flushes_pending_batch(transport, retry, bus, make_report):
    orch = DeliveryOrchestrator(
        transport,
        retry_policy=retry,
        batch_config=BatchConfig(batch_size=10, batch_timeout_ms=10_000),
        notifications=bus,
    )
    async with orch:
        await orch.submit(make_report("a"))
        await orch.submit(make_report("b"))
        assert transport.calls == 0

    assert transport.payloads[0]["count"] == 2


@pytest.mark.asyncio
async def test_periodic_drain_delivers_queued_reports(transport, retry, queue, bus, make_report):
    queue.enqueue(make_report("from-disk"))
    orch = DeliveryOrchestrator(
        transport, retry_policy=retry, offline_queue=queue, notifications=bus, drain_interval_sec=0.05
    )
    async with orch:
        assert orch.health().replay_running
        await asyncio.sleep(0.2)
        assert queue.size == 0

    assert not orch.health().replay_running
    assert transport.payloads[0]["message"] == "from-disk"


@pytest.mark.asyncio
async def test_health_snapshot(transport, retry, queue, bus):
    quota = QuotaManager()
    rate = RateLimiter()
    orch = DeliveryOrchestrator(
        transport,
        quota=quota,
        rate_limiter=rate,
        circuit_breaker=CircuitBreaker(),
        retry_policy=retry,
        offline_queue=queue,
        notifications=bus,
    )
    h = orch.health()
    assert h.circuit_state == "closed"
    assert h.queue_size == 0
    assert h.pending_batch == 0
    assert h.rate_limit_remaining == 10
    assert h.quota.daily_remaining == 1000
    assert h.retry.total_attempts == 0
