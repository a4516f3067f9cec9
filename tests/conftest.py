"""
Pytest configuration and fixtures for error-relay.

Provides cross-platform event loop configuration, report factories and
fake transports/clocks shared by the delivery and client tests.
"""

import asyncio
import sys
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional

import pytest

from error_relay.delivery import NotificationBus
from error_relay.models import Report

# Set policy *before* pytest-asyncio creates any loops
if sys.platform.startswith("win"):
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


def build_report(message: str = "boom", **overrides: Any) -> Report:
    fields: Dict[str, Any] = {
        "message": message,
        "exception_class": "ValueError",
        "stack_trace": "Traceback (most recent call last): ...",
        "file": "app/views.py",
        "line": 42,
        "project": "test-project",
        "environment": "test",
        "timestamp": "2024-01-15T10:30:00.000Z",
    }
    fields.update(overrides)
    return Report(**fields)


class RecordingTransport:
    """Transport that records payloads; ``fail_with`` makes every send raise."""

    def __init__(self, fail_with: Optional[BaseException] = None):
        self.payloads: List[Mapping[str, Any]] = []
        self.calls = 0
        self.fail_with = fail_with

    async def send(self, payload: Mapping[str, Any]) -> None:
        self.calls += 1
        await asyncio.sleep(0)
        if self.fail_with is not None:
            raise self.fail_with
        self.payloads.append(payload)


class ManualClock:
    """Callable epoch-seconds clock advanced by hand."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ManualDateClock:
    """Callable datetime clock advanced by hand."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now += timedelta(**delta)


async def no_sleep(_seconds: float) -> None:
    await asyncio.sleep(0)


@pytest.fixture
def make_report():
    return build_report


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def bus():
    """Notification bus with no subscribers; inspect ``bus.history``."""
    return NotificationBus()


@pytest.fixture
def queue_file(tmp_path):
    return str(tmp_path / "queue.json")


@pytest.fixture
def make_transport():
    return RecordingTransport


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def fast_sleep():
    return no_sleep


@pytest.fixture
def make_date_clock():
    return ManualDateClock
