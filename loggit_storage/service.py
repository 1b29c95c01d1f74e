"""
Service boundary used by presentation code.

Every operation here returns a plain value (`bool`, list, dict) and never
raises: failures are logged and reported through a `Notifier` as an alert,
the way the app shows an "Error" dialog and lets the user try again.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol

from .connection import ConnectionManager
from .database import ConnectionHandle
from .exceptions import EventLogError, StorageConnectionError
from .types import Event, Setting, SettingName
from .utils import current_month, next_month

logger = logging.getLogger(__name__)

FUTURE_MONTH_MESSAGE = "Cannot travel further into the future!"


class Notifier(Protocol):
    """Receives user-facing alerts."""

    def show_alert(self, title: str, message: str) -> None: ...


class LoggingNotifier:
    """Notifier that writes alerts to the log. Used when no UI is attached."""

    def show_alert(self, title: str, message: str) -> None:
        logger.warning(f"{title}: {message}")


@dataclass
class ViewState:
    """What the event list screen currently shows."""

    month_in_view: str = field(default_factory=current_month)
    events: list[Event] = field(default_factory=list)
    last_sync_date: str = ""
    is_loading: bool = False


def _error_message(error: Exception) -> str:
    if isinstance(error, EventLogError):
        return error.message
    return str(error) or error.__class__.__name__


class EventLogService:
    """Boolean-returning operations with reload-after-write.

    Mutations are followed by an awaited reload of the month in view, so the
    refreshed state always contains the caller's own write.
    """

    def __init__(self, connection: ConnectionManager, notifier: Notifier | None = None) -> None:
        self.connection = connection
        self.database = connection.database
        self.notifier: Notifier = notifier or LoggingNotifier()
        self.state = ViewState()

    def _alert(self, title: str, error: Exception) -> None:
        logger.error(f"{title}: {error}", exc_info=not isinstance(error, EventLogError))
        self.notifier.show_alert(title, _error_message(error))

    async def _require_handle(self, force_reload: bool = False) -> ConnectionHandle:
        handle = await self.connection.ensure_connection(force_reload)
        if handle is None:
            raise StorageConnectionError(str(self.database.config.db_path))
        return handle

    # =========================================================================
    # Reads
    # =========================================================================

    async def load_data(self, month: str | None = None, force_reload: bool = False) -> list[Event]:
        """Reload the events of a month (the month in view by default)."""
        self.state.is_loading = True
        self.state.events = []
        try:
            handle = await self.connection.ensure_connection(force_reload)
            target = month or self.state.month_in_view
            events = await self.database.fetch_events(handle, target) if handle else []
            self.state.events = events
            self.state.last_sync_date = await self.database.fetch_setting(
                SettingName.LAST_SYNC_DATE
            )
            return events
        except Exception as e:
            logger.error(f"Failed to load data: {e}", exc_info=True)
            return []
        finally:
            self.state.is_loading = False

    async def change_month_in_view(self, month: str) -> bool:
        """Switch the month in view and load it. Months past next month are refused."""
        if month > next_month():
            self.notifier.show_alert("Warning", FUTURE_MONTH_MESSAGE)
            return False

        self.state.month_in_view = month
        await self.load_data(month)
        return True

    async def fetch_all_events(self) -> list[Event]:
        handle = await self.connection.ensure_connection()
        if handle is None:
            return []
        return await self.database.fetch_all_events(handle)

    async def fetch_event(self, event_id: str) -> Event | None:
        handle = await self.connection.ensure_connection()
        if handle is None:
            return None
        return await self.database.fetch_event(handle, event_id)

    async def count_events(self) -> int | None:
        """Live event count, or None while disconnected."""
        handle = await self.connection.ensure_connection()
        if handle is None:
            return None
        return await self.database.count_events(handle)

    async def get_setting(self, name: SettingName | str) -> str:
        try:
            await self.connection.ensure_connection()
            return await self.database.fetch_setting(name)
        except Exception as e:
            logger.error(f"Failed to read setting {name}: {e}")
            return ""

    def has_finished_first_sync(self) -> bool:
        return self.database.has_finished_first_sync()

    async def export_all_data(self) -> dict[str, list[dict[str, Any]]]:
        try:
            await self.load_data(force_reload=True)
            handle = await self._require_handle()
            return await self.database.export_all_data(handle)
        except Exception as e:
            self._alert("Error", e)
            return {"events": []}

    # =========================================================================
    # Writes
    # =========================================================================

    async def save_event(self, event: Event) -> bool:
        try:
            handle = await self._require_handle()
            await self.database.save_event(handle, event)
            await self.load_data()
            return True
        except Exception as e:
            self._alert("Error", e)
            return False

    async def save_setting(self, setting: Setting) -> bool:
        """Persist a setting and reconnect, so a new sync token takes effect.

        Settings live outside the database, so a setting (such as a broken
        sync token being corrected) is saved even while disconnected.
        """
        try:
            await self.database.save_setting(setting)
            await self.load_data(force_reload=True)
            return True
        except Exception as e:
            self._alert("Error", e)
            return False

    async def delete_event(self, event_id: str) -> bool:
        try:
            handle = await self._require_handle()
            await self.database.delete_event(handle, event_id)
            await self.load_data()
            return True
        except Exception as e:
            self._alert("Error", e)
            return False

    async def import_data(self, replace: bool, events: Iterable[Event | dict[str, Any]]) -> bool:
        try:
            handle = await self._require_handle()
            await self.database.import_data(handle, replace, events)
            await self.load_data(force_reload=True)
            return True
        except Exception as e:
            self._alert("Error", e)
            return False

    async def delete_all_data(self) -> bool:
        try:
            handle = await self._require_handle(force_reload=True)
            await self.database.delete_all_data(handle)
            await self.load_data(force_reload=True)
            return True
        except Exception as e:
            self._alert("Error", e)
            return False

    async def close(self) -> None:
        """Release the connection on shutdown."""
        await self.connection.teardown()
