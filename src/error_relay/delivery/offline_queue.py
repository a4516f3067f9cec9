"""
Disk-backed fallback queue for reports that could not be sent.

The in-memory list is the source of truth; the JSON file is a snapshot
rewritten after every mutation. A corrupt or unreadable snapshot degrades to
an empty queue instead of failing startup.
"""

from __future__ import annotations

import json
import os
import tempfile
import uuid
from dataclasses import dataclass
from pathlib import Path
from time import time
from typing import Any, Callable, Dict, List, Optional

from loguru import logger
from pydantic import BaseModel, ValidationError

from ..metrics.registry import OFFLINE_QUEUE_SIZE, REPORTS_TOTAL
from ..models import Report
from .notifications import NotificationSink, default_notifications
from .types import CircuitOpenError, ReportSender

MAX_ENTRY_AGE_MS = 24 * 60 * 60 * 1000


@dataclass(frozen=True)
class QueueConfig:
    queue_file: str
    max_queue_size: int = 100
    max_retries: int = 3

    def __post_init__(self):
        if self.max_queue_size < 1:
            raise ValueError("max_queue_size must be >= 1")
        if self.max_retries < 1:
            raise ValueError("max_retries must be >= 1")


class QueueEntry(BaseModel):
    """One persisted report. ``timestamp`` is enqueue time in epoch ms."""

    id: str
    data: Dict[str, Any]
    timestamp: float
    attempts: int = 0


@dataclass(frozen=True)
class QueueStats:
    queue_size: int
    oldest_item: Optional[float]


class OfflineQueue:
    """FIFO fallback store with bounded size and per-entry retry budget."""

    def __init__(
        self,
        config: QueueConfig,
        *,
        notifications: Optional[NotificationSink] = None,
        clock: Callable[[], float] = time,
    ):
        self.config = config
        self.path = Path(config.queue_file)
        self._notify = notifications or default_notifications()
        self._clock = clock

        self._entries: List[QueueEntry] = []
        self._processing = False
        self._load()

    # --------------- public API

    @property
    def size(self) -> int:
        return len(self._entries)

    @property
    def is_processing(self) -> bool:
        return self._processing

    def entries(self) -> List[QueueEntry]:
        return [e.model_copy() for e in self._entries]

    def enqueue(self, report: Report) -> QueueEntry:
        entry = QueueEntry(
            id=str(uuid.uuid4()),
            data=report.to_payload(),
            timestamp=self._now_ms(),
        )
        self._entries.append(entry)

        while len(self._entries) > self.config.max_queue_size:
            evicted = self._entries.pop(0)
            REPORTS_TOTAL.labels(outcome="dropped").inc()
            self._notify.notify_warning(
                "offline queue full, evicted oldest report", entry_id=evicted.id
            )

        self._save()
        logger.debug(f"Queued report {entry.id} (size={len(self._entries)})")
        return entry

    async def process_queue(self, sender: ReportSender) -> None:
        """
        Send each entry once, stopping early while the circuit is open
        (remaining entries are not charged an attempt). A call while a drain
        is running is a no-op.
        """
        if self._processing or not self._entries:
            return

        self._processing = True
        try:
            done: set[str] = set()
            for entry in list(self._entries):
                try:
                    report = Report.model_validate(entry.data)
                except ValidationError as exc:
                    done.add(entry.id)
                    self._notify.notify_warning(
                        "dropping unreadable queue entry", entry_id=entry.id, error=str(exc)
                    )
                    continue

                try:
                    await sender(report)
                except CircuitOpenError:
                    logger.debug("Circuit open, ending queue pass early")
                    break
                except Exception as exc:
                    entry.attempts += 1
                    if entry.attempts >= self.config.max_retries:
                        done.add(entry.id)
                        REPORTS_TOTAL.labels(outcome="dropped").inc()
                        self._notify.notify_warning(
                            f"dropping report after {entry.attempts} failed attempts",
                            entry_id=entry.id,
                            error=f"{type(exc).__name__}: {exc}",
                        )
                    continue

                done.add(entry.id)
                REPORTS_TOTAL.labels(outcome="replayed").inc()

            # Entries enqueued while draining are kept.
            self._entries = [e for e in self._entries if e.id not in done]
            self._save()
            if done:
                logger.info(f"Offline queue drained {len(done)} entries ({self.size} remaining)")
        finally:
            self._processing = False

    def clear(self) -> None:
        self._entries = []
        self._save()

    def stats(self) -> QueueStats:
        oldest = self._entries[0].timestamp if self._entries else None
        return QueueStats(queue_size=len(self._entries), oldest_item=oldest)

    # --------------- persistence

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            self._notify.notify_warning("failed to load queue file", path=str(self.path), error=str(exc))
            self._entries = []
            return

        if not isinstance(raw, list):
            self._notify.notify_warning("queue file is not a JSON array, ignoring", path=str(self.path))
            return

        cutoff = self._now_ms() - MAX_ENTRY_AGE_MS
        entries: List[QueueEntry] = []
        for item in raw:
            try:
                entry = QueueEntry.model_validate(item)
            except ValidationError:
                logger.debug(f"Skipping malformed queue entry: {item!r:.200}")
                continue
            if entry.timestamp > cutoff:
                entries.append(entry)

        self._entries = entries[-self.config.max_queue_size :]
        OFFLINE_QUEUE_SIZE.set(len(self._entries))
        if self._entries:
            logger.info(f"Loaded {len(self._entries)} queued reports from {self.path}")

    def _save(self) -> None:
        OFFLINE_QUEUE_SIZE.set(len(self._entries))
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            payload = json.dumps([e.model_dump() for e in self._entries], indent=2)
            fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                os.replace(tmp, self.path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as exc:
            self._notify.notify_warning(
                "failed to save queue file", path=str(self.path), error=str(exc)
            )

    def _now_ms(self) -> float:
        return self._clock() * 1000.0
