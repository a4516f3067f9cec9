from __future__ import annotations

from collections import deque
from typing import Any, Deque, Dict, List, Optional

from error_relay.models import Breadcrumb, BreadcrumbLevel

from .utils import utc_now_iso


class BreadcrumbTrail:
    """Bounded trail of recent events; the oldest entry falls off when full."""

    def __init__(self, max_breadcrumbs: int = 50):
        if max_breadcrumbs < 1:
            raise ValueError("max_breadcrumbs must be >= 1")
        self.max_breadcrumbs = max_breadcrumbs
        self._items: Deque[Breadcrumb] = deque(maxlen=max_breadcrumbs)

    def __len__(self) -> int:
        return len(self._items)

    def add(
        self,
        message: str,
        category: str = "custom",
        level: BreadcrumbLevel = "info",
        data: Optional[Dict[str, Any]] = None,
    ) -> Breadcrumb:
        crumb = Breadcrumb(
            message=message, category=category, level=level, timestamp=utc_now_iso(), data=data
        )
        self._items.append(crumb)
        return crumb

    def add_http_request(self, method: str, url: str, status_code: Optional[int] = None) -> Breadcrumb:
        suffix = f" -> {status_code}" if status_code else ""
        return self.add(
            f"{method.upper()} {url}{suffix}",
            category="http",
            level="error" if status_code and status_code >= 400 else "info",
            data={"method": method.upper(), "url": url, "status_code": status_code},
        )

    def add_navigation(self, from_: str, to: str) -> Breadcrumb:
        return self.add(
            f"Navigation: {from_} -> {to}", category="navigation", data={"from": from_, "to": to}
        )

    def add_user_action(self, action: str, data: Optional[Dict[str, Any]] = None) -> Breadcrumb:
        return self.add(f"User action: {action}", category="user", data=data)

    def add_query(self, query: str, duration_ms: Optional[float] = None) -> Breadcrumb:
        shown = query if len(query) <= 100 else query[:100] + "..."
        return self.add(
            f"Query: {shown}", category="query", data={"query": query, "duration_ms": duration_ms}
        )

    def items(self) -> List[Breadcrumb]:
        return list(self._items)

    def clear(self) -> None:
        self._items.clear()
