"""
Gzip + base64 payload compression.

Payloads at or below ``threshold`` bytes pass through untouched; the
``CompressionResult`` records which way a payload went so ``decompress``
can restore either form.
"""

from __future__ import annotations

import base64
import binascii
import gzip
import json
from dataclasses import dataclass
from time import perf_counter
from typing import Any, Union

from loguru import logger


class CompressionError(ValueError):
    pass


@dataclass(frozen=True)
class CompressionResult:
    data: str
    compressed: bool
    original_size: int
    compressed_size: int

    @property
    def ratio(self) -> float:
        return self.compressed_size / self.original_size if self.original_size else 1.0


@dataclass
class CompressionStats:
    total_compressions: int = 0
    total_decompressions: int = 0
    total_bytes_saved: int = 0
    average_compression_ratio: float = 0.0
    compression_time_ms: float = 0.0


class CompressionService:
    def __init__(self, threshold: int = 1024, level: int = 6):
        if not 1 <= level <= 9:
            raise ValueError("level must be between 1 and 9")
        self.threshold = threshold
        self.level = level
        self.stats = CompressionStats()

    def should_compress(self, data: Any) -> bool:
        return _byte_size(data) > self.threshold

    def compress(self, data: Any) -> CompressionResult:
        text = _as_text(data)
        raw = text.encode("utf-8")
        if len(raw) <= self.threshold:
            return CompressionResult(text, False, len(raw), len(raw))

        encoded = self._gzip_b64(raw)
        return CompressionResult(encoded, True, len(raw), len(encoded))

    def compress_json(self, data: Any) -> str:
        """Unconditionally gzip+base64 the JSON form of ``data``."""
        return self._gzip_b64(_as_text(data).encode("utf-8"))

    def decompress(self, data: Union[CompressionResult, str]) -> str:
        if isinstance(data, CompressionResult):
            if not data.compressed:
                return data.data
            data = data.data
        try:
            out = gzip.decompress(base64.b64decode(data, validate=True)).decode("utf-8")
        except (binascii.Error, OSError, EOFError, UnicodeDecodeError) as e:
            raise CompressionError(f"Failed to decompress data: {e}") from e
        self.stats.total_decompressions += 1
        return out

    def reset_stats(self) -> None:
        self.stats = CompressionStats()

    def _gzip_b64(self, raw: bytes) -> str:
        started = perf_counter()
        encoded = base64.b64encode(gzip.compress(raw, compresslevel=self.level)).decode("ascii")
        elapsed_ms = (perf_counter() - started) * 1000.0

        ratio = len(encoded) / len(raw) if raw else 1.0
        st = self.stats
        st.total_compressions += 1
        st.total_bytes_saved += len(raw) - len(encoded)
        st.compression_time_ms += elapsed_ms
        st.average_compression_ratio += (ratio - st.average_compression_ratio) / st.total_compressions
        logger.debug(f"Compressed {len(raw)} -> {len(encoded)} bytes ({ratio:.0%}) in {elapsed_ms:.1f}ms")
        return encoded


def _as_text(data: Any) -> str:
    return data if isinstance(data, str) else json.dumps(data)


def _byte_size(data: Any) -> int:
    if isinstance(data, (bytes, bytearray)):
        return len(data)
    return len(_as_text(data).encode("utf-8"))
