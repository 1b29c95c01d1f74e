"""
Exceptions raised by the event log.

The data layer raises; the service boundary (service.EventLogService) turns
anything derived from EventLogError into a user alert. Each error keeps its
inputs as attributes and mirrors the non-empty ones into ``details`` for
structured logging.
"""

from typing import Any


class EventLogError(Exception):
    """Base class; ``message`` is what the user ends up seeing."""

    def __init__(self, message: str, details: dict | None = None, **context: Any):
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})
        for key, value in context.items():
            setattr(self, key, value)
            if value is None or value == "":
                continue
            self.details[key] = str(value) if isinstance(value, BaseException) else value


class EventValidationError(EventLogError):
    """An event was rejected before anything was written."""

    def __init__(self, message: str, field: str | None = None, value: str | None = None):
        super().__init__(message, field=field, value=value)


class EventNotFoundError(EventLogError):
    """Update or delete named an id that is absent or tombstoned."""

    def __init__(self, event_id: str):
        super().__init__(f"Event not found: {event_id}", event_id=event_id)


class StorageIOError(EventLogError):
    """Reading or writing the database, the settings file or a config file failed."""

    def __init__(self, operation: str, path: str | None = None, cause: Exception | None = None):
        where = f": {path}" if path else ""
        super().__init__(
            f"Storage I/O error during {operation}{where}",
            operation=operation,
            path=path,
            cause=cause,
        )


class StorageConnectionError(EventLogError):
    """The database could not be opened or a remote could not be reached.

    Not called ConnectionError so the builtin stays visible.
    """

    def __init__(self, endpoint: str, cause: Exception | None = None):
        super().__init__(f"Connection failed to {endpoint}", endpoint=endpoint, cause=cause)


class QueryError(EventLogError):
    def __init__(self, operation: str, cause: Exception | None = None):
        super().__init__(f"Query failed during {operation}", operation=operation, cause=cause)


class ReplicationError(EventLogError):
    """The remote answered, but not with what replication needed."""

    def __init__(
        self,
        message: str,
        endpoint: str | None = None,
        status: int | None = None,
        reason: str | None = None,
    ):
        super().__init__(message, endpoint=endpoint, status=status, reason=reason)
