"""
Local storage.

- LocalEventStore: SQLite event collection with a changes feed for replication
- SettingsStore: flat JSON key-value settings kept outside the event database
"""

from .event_store import ALL_TIME_RANGE, INVALID_NAME_MESSAGE, LocalEventStore
from .settings_store import SettingsStore

__all__ = [
    "ALL_TIME_RANGE",
    "INVALID_NAME_MESSAGE",
    "LocalEventStore",
    "SettingsStore",
]
