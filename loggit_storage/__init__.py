"""
Loggit Storage

Local-first storage for a personal event log, with optional live
replication to a CouchDB-compatible remote.

Provides:
- Local event store (SQLite) with month and full-range queries
- Settings store for the sync token and last sync date
- Live, retrying, bidirectional replication
- Connection lifecycle management with a single shared handle
- Chunked, rate-friendly backup import and JSON export

Usage:

    >>> from loggit_storage import ConnectionManager, EventDatabase, EventLogService
    >>> connection = ConnectionManager(EventDatabase())
    >>> service = EventLogService(connection)
    >>> await service.save_event(Event(id=NEW_EVENT_ID, name="Went running", date="2024-03-14"))
    >>> events = await service.load_data("2024-03")
    >>> await service.close()
"""

from .config import ReplicationConfig, StorageConfig
from .connection import ConnectionManager, ConnectionState
from .database import ConnectionHandle, EventDatabase
from .exceptions import (
    EventLogError,
    EventNotFoundError,
    EventValidationError,
    QueryError,
    ReplicationError,
    StorageConnectionError,
    StorageIOError,
)
from .local import LocalEventStore, SettingsStore
from .service import EventLogService, LoggingNotifier, Notifier, ViewState
from .sync import (
    ChangeInfo,
    RemoteDocumentStore,
    ReplicationSession,
    ReplicationSessionManager,
    RetryConfig,
)
from .types import NEW_EVENT_ID, Event, Setting, SettingName

__all__ = [
    # Configuration
    "StorageConfig",
    "ReplicationConfig",
    "RetryConfig",
    # Core
    "ConnectionManager",
    "ConnectionState",
    "ConnectionHandle",
    "EventDatabase",
    "EventLogService",
    "Notifier",
    "LoggingNotifier",
    "ViewState",
    # Storage
    "LocalEventStore",
    "SettingsStore",
    # Replication
    "ChangeInfo",
    "RemoteDocumentStore",
    "ReplicationSession",
    "ReplicationSessionManager",
    # Types
    "Event",
    "Setting",
    "SettingName",
    "NEW_EVENT_ID",
    # Exceptions
    "EventLogError",
    "EventValidationError",
    "EventNotFoundError",
    "StorageConnectionError",
    "StorageIOError",
    "QueryError",
    "ReplicationError",
]

__version__ = "0.1.0"
