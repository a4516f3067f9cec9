"""
Unit tests for BatchManager flushing and payload splitting.
"""

import asyncio
from typing import List, Sequence

import pytest

from error_relay.delivery import BatchConfig, BatchManager, BatchSendError, split_chunks
from error_relay.delivery.batch import payload_size
from error_relay.models import Report


class ChunkCollector:
    def __init__(self, fail_on_call: int = 0):
        self.chunks: List[List[Report]] = []
        self.fail_on_call = fail_on_call
        self.calls = 0

    async def __call__(self, chunk: Sequence[Report]) -> None:
        self.calls += 1
        await asyncio.sleep(0)
        if self.fail_on_call and self.calls >= self.fail_on_call:
            raise ConnectionError("collector down")
        self.chunks.append(list(chunk))


@pytest.mark.asyncio
async def test_size_trigger_sends_one_batch(make_report):
    """Batch size 3: the third add empties the batch and sends all three."""
    send = ChunkCollector()
    bm = BatchManager(send, BatchConfig(batch_size=3, batch_timeout_ms=10_000))

    for i in range(3):
        await bm.add(make_report(f"r{i}"))

    assert bm.pending() == []
    assert bm._timer is None

    await bm.flush()
    assert len(send.chunks) == 1
    assert [r.message for r in send.chunks[0]] == ["r0", "r1", "r2"]
    assert bm.stats.total_batches == 1


@pytest.mark.asyncio
async def test_size_trigger_does_not_wait_for_send(make_report):
    release = asyncio.Event()
    sent = []

    async def slow_send(chunk):
        await release.wait()
        sent.append([r.message for r in chunk])

    bm = BatchManager(slow_send, BatchConfig(batch_size=2, batch_timeout_ms=10_000))
    await bm.add(make_report("a"))
    await asyncio.wait_for(bm.add(make_report("b")), timeout=1)

    assert bm.pending() == []
    assert sent == []

    release.set()
    await bm.close()
    assert sent == [["a", "b"]]


@pytest.mark.asyncio
async def test_timer_flushes_partial_batch(make_report):
    send = ChunkCollector()
    bm = BatchManager(send, BatchConfig(batch_size=10, batch_timeout_ms=50))

    await bm.add(make_report("only"))
    assert bm._timer is not None
    assert send.chunks == []

    await asyncio.sleep(0.15)
    assert len(send.chunks) == 1
    assert bm.pending() == []
    await bm.close()


@pytest.mark.asyncio
async def test_oversized_batch_is_split_in_order(make_report):
    reports = [make_report(f"r{i}", stack_trace="x" * 400) for i in range(6)]
    limit = payload_size(reports[:2])
    send = ChunkCollector()
    bm = BatchManager(
        send,
        BatchConfig(batch_size=100, batch_timeout_ms=10_000, max_payload_size=limit, chunk_delay_ms=1),
    )
    for r in reports:
        await bm.add(r)
    await bm.flush()

    assert [len(c) for c in send.chunks] == [2, 2, 2]
    assert [r.message for c in send.chunks for r in c] == [f"r{i}" for i in range(6)]


@pytest.mark.asyncio
async def test_flush_failure_reports_every_unsent_report(make_report):
    reports = [make_report(f"r{i}", stack_trace="x" * 400) for i in range(4)]
    limit = payload_size(reports[:2])
    send = ChunkCollector(fail_on_call=2)  # first chunk ok, second fails
    bm = BatchManager(
        send,
        BatchConfig(batch_size=100, batch_timeout_ms=10_000, max_payload_size=limit, chunk_delay_ms=1),
    )
    for r in reports:
        await bm.add(r)

    with pytest.raises(BatchSendError) as ei:
        await bm.flush()

    assert [r.message for r in ei.value.unsent] == ["r2", "r3"]
    assert isinstance(ei.value.cause, ConnectionError)
    assert bm.pending() == []
    assert bm.stats.history[-1].success is False


@pytest.mark.asyncio
async def test_on_error_receives_failed_size_flush(make_report):
    salvaged = []

    async def on_error(err: BatchSendError):
        salvaged.extend(err.unsent)

    bm = BatchManager(
        ChunkCollector(fail_on_call=1), BatchConfig(batch_size=2, batch_timeout_ms=10_000), on_error=on_error
    )
    await bm.add(make_report("a"))
    await bm.add(make_report("b"))
    await bm.flush()

    assert [r.message for r in salvaged] == ["a", "b"]


@pytest.mark.asyncio
async def test_reports_added_during_send_go_to_next_batch(make_report):
    release = asyncio.Event()
    sent = []

    async def slow_send(chunk):
        await release.wait()
        sent.append([r.message for r in chunk])

    bm = BatchManager(slow_send, BatchConfig(batch_size=2, batch_timeout_ms=10_000))
    await bm.add(make_report("a"))
    await bm.add(make_report("b"))
    await asyncio.sleep(0)

    await bm.add(make_report("c"))
    assert [r.message for r in bm.pending()] == ["c"]

    release.set()
    await bm.close()
    assert sent == [["a", "b"], ["c"]]


@pytest.mark.asyncio
async def test_close_flushes_and_cancels_timer(make_report):
    send = ChunkCollector()
    bm = BatchManager(send, BatchConfig(batch_size=10, batch_timeout_ms=10_000))
    await bm.add(make_report("a"))

    await bm.close()
    assert bm._timer is None
    assert len(send.chunks) == 1


@pytest.mark.asyncio
async def test_clear_drops_pending(make_report):
    send = ChunkCollector()
    bm = BatchManager(send, BatchConfig(batch_size=10, batch_timeout_ms=10_000))
    await bm.add(make_report("a"))
    bm.clear()

    await bm.flush()
    assert send.calls == 0


def test_split_gives_oversized_report_its_own_chunk(make_report):
    small = make_report("small")
    big = make_report("big", stack_trace="y" * 5000)
    chunks = split_chunks([small, big, small], max_bytes=payload_size([small]))

    assert [[r.message for r in c] for c in chunks] == [["small"], ["big"], ["small"]]


@pytest.mark.parametrize("slack", [-1, 0, 1])
def test_every_chunk_envelope_fits_the_limit(make_report, slack):
    reports = [make_report(f"r{i}", stack_trace="z" * 300) for i in range(4)]
    limit = payload_size(reports[:2]) + slack

    chunks = split_chunks(reports, limit)

    assert all(payload_size(c) <= limit for c in chunks)
    assert [len(c) for c in chunks] == ([1, 1, 1, 1] if slack < 0 else [2, 2])


def test_config_validation():
    with pytest.raises(ValueError):
        BatchConfig(batch_size=0)
    with pytest.raises(ValueError):
        BatchConfig(batch_timeout_ms=0)
