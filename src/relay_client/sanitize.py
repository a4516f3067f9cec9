"""
Redaction of sensitive values before a report leaves the process.

Only the free-form parts of a report are scanned (message, stack trace,
context, request, breadcrumbs); identity fields set explicitly by the host
through ``set_user`` are left as given.
"""

from __future__ import annotations

import re
from typing import Any, Iterable, List, Optional, Pattern, Sequence

from error_relay.models import Report

REDACTED = "[REDACTED]"

SENSITIVE_KEYS = (
    "password",
    "passwd",
    "token",
    "secret",
    "key",
    "auth",
    "credential",
    "cookie",
    "session",
)

DEFAULT_PATTERNS: List[Pattern[str]] = [
    # card numbers
    re.compile(r"\b\d{4}[-\s]?\d{4}[-\s]?\d{4}[-\s]?\d{4}\b"),
    # US SSN
    re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),
    # JWT
    re.compile(r"\beyJ[A-Za-z0-9_-]*\.[A-Za-z0-9_-]*\.[A-Za-z0-9_-]*\b"),
    # api_key=..., api-key: ...
    re.compile(r"\bapi[_-]?key\s*[:=]\s*[A-Za-z0-9_-]{6,}\b", re.IGNORECASE),
    # password=... / "password": "..."
    re.compile(r"[\"']?password[\"']?\s*[:=]\s*[\"']?[^\"'\s,&}]*[\"']?", re.IGNORECASE),
    # bearer / access tokens
    re.compile(r"\bbearer\s+[A-Za-z0-9._~+/-]{10,}=*", re.IGNORECASE),
    re.compile(r"\baccess[_-]?token[:=\s]*[A-Za-z0-9_-]{20,}\b", re.IGNORECASE),
]

# Opt-in: these also match values hosts often want to keep.
PII_PATTERNS: List[Pattern[str]] = [
    re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
    re.compile(r"\b(?:[0-9]{1,3}\.){3}[0-9]{1,3}\b"),
    re.compile(r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b"),
]

_SCANNED_FIELDS = ("message", "stack_trace", "context", "request", "breadcrumbs")


class Sanitizer:
    def __init__(
        self,
        sensitive_keys: Sequence[str] = SENSITIVE_KEYS,
        patterns: Optional[Iterable[Pattern[str]]] = None,
        enabled: bool = True,
    ):
        self.sensitive_keys = tuple(k.lower() for k in sensitive_keys)
        self.patterns: List[Pattern[str]] = list(DEFAULT_PATTERNS if patterns is None else patterns)
        self.enabled = enabled

    def add_pattern(self, pattern: Pattern[str]) -> None:
        if pattern not in self.patterns:
            self.patterns.append(pattern)

    def sanitize(self, report: Report) -> Report:
        if not self.enabled:
            return report
        data = report.to_payload()
        for name in _SCANNED_FIELDS:
            if name in data:
                data[name] = self.scrub(data[name])
        return Report.model_validate(data)

    def scrub(self, value: Any) -> Any:
        """Recursively redact sensitive keys and text patterns in JSON-like data."""
        if isinstance(value, str):
            return self.scrub_text(value)
        if isinstance(value, list):
            return [self.scrub(v) for v in value]
        if isinstance(value, dict):
            return {
                k: REDACTED if self.is_sensitive_key(k) else self.scrub(v) for k, v in value.items()
            }
        return value

    def scrub_text(self, text: str) -> str:
        for pattern in self.patterns:
            text = pattern.sub(REDACTED, text)
        return text

    def is_sensitive_key(self, key: Any) -> bool:
        lowered = str(key).lower()
        return any(s in lowered for s in self.sensitive_keys)
