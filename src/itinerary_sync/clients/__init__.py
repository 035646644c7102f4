"""HTTP clients for the external stores."""

from .errors import SyncTokenExpired, TransportError
from .gcal import GoogleCalendarClient
from .notion import NotionClient

__all__ = [
    "GoogleCalendarClient",
    "NotionClient",
    "SyncTokenExpired",
    "TransportError",
]
