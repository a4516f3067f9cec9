"""Wire envelopes sent to the collector."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence

from ..models import Report
from .types import Compressor

SDK_NAME = "error-relay-python"
SDK_VERSION = "1.0.0"


def single_payload(report: Report) -> Dict[str, Any]:
    return report.to_payload()


def batch_payload(reports: Sequence[Report]) -> Dict[str, Any]:
    return {
        "type": "batch",
        "errors": [r.to_payload() for r in reports],
        "timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
        "count": len(reports),
    }


def compressed_payload(data: str) -> Dict[str, Any]:
    return {
        "compressed": True,
        "data": data,
        "metadata": {"compression": "gzip-base64", "sdk": SDK_NAME, "version": SDK_VERSION},
    }


def build_payload(
    reports: Sequence[Report], *, batched: bool, compressor: Optional[Compressor] = None
) -> Dict[str, Any]:
    """Single report or batch envelope, wrapped in a compressed envelope when large."""
    if not reports:
        raise ValueError("at least one report is required")
    body = batch_payload(reports) if batched else single_payload(reports[0])
    if compressor is not None and compressor.should_compress(body):
        return compressed_payload(compressor.compress_json(body))
    return body
