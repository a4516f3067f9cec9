from __future__ import annotations

import asyncio
import json
from collections import deque
from dataclasses import dataclass, field
from time import time
from typing import Awaitable, Callable, Deque, List, Optional, Sequence

from loguru import logger

from ..models import Report
from .payloads import batch_payload
from .types import BatchSendError, ChunkSender

BatchErrorHandler = Callable[[BatchSendError], Awaitable[None]]


@dataclass(frozen=True)
class BatchConfig:
    """Size/time/bytes flush thresholds."""

    batch_size: int = 10  # flush immediately at N reports
    batch_timeout_ms: int = 5000  # or this long after the first report
    max_payload_size: int = 512_000  # split into chunks above ~500KB
    chunk_delay_ms: int = 100
    history_size: int = 100

    def __post_init__(self):
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if self.batch_timeout_ms <= 0:
            raise ValueError("batch_timeout_ms must be > 0")


@dataclass(frozen=True)
class BatchHistoryEntry:
    timestamp: float
    size: int
    payload_size: int
    success: bool
    error: Optional[str] = None


@dataclass
class BatchStats:
    total_batches: int = 0
    total_reports: int = 0
    average_batch_size: float = 0.0
    last_sent_at: Optional[float] = None
    history: Deque[BatchHistoryEntry] = field(default_factory=deque)


class BatchManager:
    """
    Groups reports into one outbound payload, flushing by size or timeout.

    Usage:

        bm = BatchManager(send_chunk, BatchConfig(batch_size=3), on_error=salvage)
        await bm.add(report)   # 3rd add flushes
        await bm.close()       # cancel timer + final flush

    ``add()`` never waits on the network: the size trigger and the timer
    swap the batch out and send it on a background task. Failures of those
    sends go to ``on_error`` (or are logged and dropped when none is set).
    ``flush()`` waits for background sends, then sends what is pending and
    raises BatchSendError with every undelivered report.
    """

    def __init__(
        self,
        send: ChunkSender,
        config: Optional[BatchConfig] = None,
        *,
        on_error: Optional[BatchErrorHandler] = None,
    ):
        self._send = send
        self._cfg = config or BatchConfig()
        self._on_error = on_error

        self._batch: List[Report] = []
        self._timer: Optional[asyncio.TimerHandle] = None
        self._background: set[asyncio.Task] = set()

        self.stats = BatchStats(history=deque(maxlen=self._cfg.history_size))

    @property
    def config(self) -> BatchConfig:
        return self._cfg

    # --------------- public API

    async def add(self, report: Report) -> None:
        self._batch.append(report)
        self.stats.total_reports += 1

        if len(self._batch) >= self._cfg.batch_size:
            self._cancel_timer()
            self._send_in_background(self._take())
        elif self._timer is None:
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(self._cfg.batch_timeout_ms / 1000.0, self._on_timer)

    async def flush(self) -> None:
        """Send everything pending. Raises BatchSendError on failure."""
        self._cancel_timer()
        await self._wait_background()
        await self._send_batch(self._take())

    def pending(self) -> List[Report]:
        return list(self._batch)

    def clear(self) -> None:
        self._cancel_timer()
        self._batch = []

    async def close(self) -> None:
        """Cancel the timer, wait for background sends, then flush what is left."""
        self._cancel_timer()
        await self._wait_background()
        await self._send_guarded(self._take())

    # --------------- internals

    def _take(self) -> List[Report]:
        # Reports added while this batch is in flight go to the next one.
        batch, self._batch = self._batch, []
        return batch

    def _on_timer(self) -> None:
        self._timer = None
        self._send_in_background(self._take())

    def _send_in_background(self, batch: List[Report]) -> None:
        if not batch:
            return
        task = asyncio.ensure_future(self._send_guarded(batch))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _wait_background(self) -> None:
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _send_guarded(self, batch: List[Report]) -> None:
        try:
            await self._send_batch(batch)
        except BatchSendError as exc:
            if self._on_error is None:
                logger.error(f"Dropping {len(exc.unsent)} unsent report(s): {exc.cause}")
                return
            await self._on_error(exc)

    async def _send_batch(self, batch: List[Report]) -> None:
        if not batch:
            return

        if payload_size(batch) > self._cfg.max_payload_size:
            chunks = split_chunks(batch, self._cfg.max_payload_size)
            logger.warning(
                f"Batch of {len(batch)} exceeds {self._cfg.max_payload_size} bytes; "
                f"sending {len(chunks)} chunks"
            )
        else:
            chunks = [batch]

        for i, chunk in enumerate(chunks):
            try:
                await self._send_chunk(chunk)
            except Exception as exc:
                unsent = [r for c in chunks[i:] for r in c]
                raise BatchSendError(unsent, exc) from exc
            if len(chunks) > 1 and i < len(chunks) - 1:
                await asyncio.sleep(self._cfg.chunk_delay_ms / 1000.0)

    async def _send_chunk(self, chunk: Sequence[Report]) -> None:
        started = time()
        size = payload_size(chunk)
        try:
            await self._send(chunk)
        except Exception as exc:
            self.stats.history.append(
                BatchHistoryEntry(started, len(chunk), size, False, f"{type(exc).__name__}: {exc}")
            )
            logger.error(f"Failed to send batch of {len(chunk)} reports: {exc}")
            raise

        st = self.stats
        st.total_batches += 1
        st.last_sent_at = time()
        st.average_batch_size += (len(chunk) - st.average_batch_size) / st.total_batches
        st.history.append(BatchHistoryEntry(started, len(chunk), size, True))
        logger.debug(f"Sent batch of {len(chunk)} reports ({size} bytes)")

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


def report_size(report: Report) -> int:
    return len(json.dumps(report.to_payload()).encode("utf-8"))


def payload_size(reports: Sequence[Report]) -> int:
    """Bytes of the batch envelope that would be POSTed for ``reports``."""
    return len(json.dumps(batch_payload(reports)).encode("utf-8"))


def _envelope_size(overhead: int, reports_bytes: int, count: int) -> int:
    # ", " between array items, plus the extra digits of "count"
    return overhead + reports_bytes + 2 * max(count - 1, 0) + len(str(count)) - 1


def split_chunks(reports: Sequence[Report], max_bytes: int) -> List[List[Report]]:
    """
    Greedy, order-preserving split so that every chunk's batch envelope is
    at most ``max_bytes``. An oversized single report gets its own chunk.
    """
    overhead = payload_size([])
    chunks: List[List[Report]] = []
    current: List[Report] = []
    current_bytes = 0
    for r in reports:
        size = report_size(r)
        if current and _envelope_size(overhead, current_bytes + size, len(current) + 1) > max_bytes:
            chunks.append(current)
            current, current_bytes = [], 0
        current.append(r)
        current_bytes += size
    if current:
        chunks.append(current)
    return chunks
