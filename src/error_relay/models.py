"""
Pydantic data models for error reports.

A Report is immutable once built; the delivery pipeline only moves it around.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

BreadcrumbLevel = Literal["debug", "info", "warning", "error"]


class Breadcrumb(BaseModel):
    """A single trail entry recorded before an error happened."""

    model_config = ConfigDict(frozen=True)

    message: str
    category: str = "custom"
    level: BreadcrumbLevel = "info"
    timestamp: str
    data: Optional[Dict[str, Any]] = None


class RequestData(BaseModel):
    """HTTP request context captured alongside an error."""

    model_config = ConfigDict(frozen=True)

    url: Optional[str] = None
    method: Optional[str] = None
    headers: Optional[Dict[str, str]] = None
    query: Optional[Dict[str, Any]] = None
    body: Optional[Any] = None
    ip: Optional[str] = None
    user_agent: Optional[str] = None


class ServerData(BaseModel):
    """Host process information."""

    model_config = ConfigDict(frozen=True)

    python_version: str
    platform: str
    arch: str
    hostname: str
    pid: int
    uptime: float


class UserContext(BaseModel):
    """End-user identity attached to reports. Extra keys are kept."""

    model_config = ConfigDict(frozen=True, extra="allow")

    id: Optional[Union[str, int]] = None
    email: Optional[str] = None
    username: Optional[str] = None
    ip: Optional[str] = None


class Report(BaseModel):
    """Normalized error report handed to the delivery pipeline."""

    model_config = ConfigDict(frozen=True)

    message: str
    exception_class: str
    stack_trace: str = ""
    file: str = "unknown"
    line: int = 0
    project: str
    environment: str = "production"
    timestamp: str
    commit_hash: Optional[str] = None
    http_status: Optional[int] = None
    request: Optional[RequestData] = None
    server: Optional[ServerData] = None
    context: Dict[str, Any] = Field(default_factory=dict)
    breadcrumbs: List[Breadcrumb] = Field(default_factory=list)
    user: Optional[UserContext] = None

    @field_validator("timestamp")
    @classmethod
    def _validate_timestamp(cls, v: str) -> str:
        try:
            datetime.fromisoformat(v.replace("Z", "+00:00"))
        except ValueError:
            raise ValueError(f"Invalid timestamp: {v!r}. Must be ISO-8601")
        return v

    @field_validator("line")
    @classmethod
    def _validate_line(cls, v: int) -> int:
        if v < 0:
            raise ValueError("line must be >= 0")
        return v

    def to_payload(self) -> Dict[str, Any]:
        """JSON-ready dict used on the wire and in the queue file."""
        return self.model_dump(mode="json", exclude_none=True)
