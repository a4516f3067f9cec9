from __future__ import annotations

from typing import Any, Awaitable, Callable, Mapping, Protocol, Sequence, TypeVar, runtime_checkable

from ..models import Report

T = TypeVar("T")

AsyncOperation = Callable[[], Awaitable[T]]
ReportSender = Callable[[Report], Awaitable[None]]
ChunkSender = Callable[[Sequence[Report]], Awaitable[None]]


class RelayError(Exception):
    """Base error raised inside the delivery pipeline."""


class CircuitOpenError(RelayError):
    """Raised without a network round-trip while the breaker is open."""


class CallTimeoutError(RelayError, TimeoutError):
    """A guarded call did not finish within the breaker's call timeout."""


class RateLimitedError(RelayError):
    """The transport rate window refused an outbound attempt."""


class BatchSendError(RelayError):
    """A batch flush failed part-way.

    ``unsent`` holds every report of the flushed batch that was not
    delivered (the failing chunk and all chunks after it), in order.
    """

    def __init__(self, unsent: Sequence[Report], cause: BaseException):
        super().__init__(f"batch send failed ({len(unsent)} reports unsent): {cause}")
        self.unsent = list(unsent)
        self.cause = cause


@runtime_checkable
class Transport(Protocol):
    """Outbound channel to the collector. Raises on any non-delivery."""

    async def send(self, payload: Mapping[str, Any]) -> None: ...


class Compressor(Protocol):
    def should_compress(self, data: Any) -> bool: ...

    def compress_json(self, data: Any) -> str: ...
