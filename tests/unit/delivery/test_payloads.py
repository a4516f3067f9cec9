"""
Unit tests for wire envelopes.
"""

import pytest

from error_relay.delivery import build_payload
from error_relay.delivery.payloads import SDK_NAME


class ThresholdCompressor:
    def __init__(self, threshold):
        self.threshold = threshold

    def should_compress(self, data):
        return len(str(data)) > self.threshold

    def compress_json(self, data):
        return "compressed-body"


def test_single_report_is_sent_as_is(make_report):
    payload = build_payload([make_report("one")], batched=False)
    assert payload["message"] == "one"
    assert "type" not in payload
    assert "commit_hash" not in payload  # None fields are omitted


def test_batch_envelope(make_report):
    payload = build_payload([make_report("a"), make_report("b")], batched=True)
    assert payload["type"] == "batch"
    assert payload["count"] == 2
    assert [e["message"] for e in payload["errors"]] == ["a", "b"]
    assert payload["timestamp"]


def test_compressed_envelope_above_threshold(make_report):
    payload = build_payload(
        [make_report("x" * 500)], batched=False, compressor=ThresholdCompressor(100)
    )
    assert payload == {
        "compressed": True,
        "data": "compressed-body",
        "metadata": {"compression": "gzip-base64", "sdk": SDK_NAME, "version": "1.0.0"},
    }


def test_small_payload_not_compressed(make_report):
    payload = build_payload(
        [make_report("x")], batched=False, compressor=ThresholdCompressor(100_000)
    )
    assert payload["message"] == "x"


def test_empty_list_rejected():
    with pytest.raises(ValueError):
        build_payload([], batched=True)
