"""error_relay: resilient delivery of error reports to a remote collector."""

from .models import Breadcrumb, Report, RequestData, ServerData, UserContext
from .settings import RelaySettings, get_settings

__all__ = [
    "Breadcrumb",
    "Report",
    "RequestData",
    "ServerData",
    "UserContext",
    "RelaySettings",
    "get_settings",
]
