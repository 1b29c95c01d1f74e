"""
Data access facade.

`EventDatabase` is the single entry point for storage: it opens connection
handles, runs CRUD and range queries against the local event store, reads
and writes settings, imports and exports backups, and erases data locally
and remotely. Handles are passed in by the caller (normally from a
`ConnectionManager`) and never cached here.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from .config import StorageConfig
from .exceptions import StorageConnectionError
from .local.event_store import LocalEventStore
from .local.settings_store import SettingsStore
from .sync.manager import ReplicationSessionManager
from .sync.remote import redact_locator
from .sync.replicator import ReplicationSession
from .types import Event, Setting, SettingName
from .utils import sort_by_date, split_in_chunks

logger = logging.getLogger(__name__)

# Full range used for backups
EXPORT_RANGE = ("2000-01-01", "2100-12-31")


@dataclass
class ConnectionHandle:
    """An open event store plus its replication session, if sync is enabled."""

    store: LocalEventStore
    replication: ReplicationSession | None = None

    @property
    def is_live(self) -> bool:
        """True while the store is open and exposes its event collection."""
        return self.store.has_collection


class EventDatabase:
    """Facade over the event store, settings and replication.

    Read operations degrade to empty results on failure. Validation and
    not-found errors from writes propagate so the caller can show them.
    """

    def __init__(
        self,
        config: StorageConfig | None = None,
        settings: SettingsStore | None = None,
        replication: ReplicationSessionManager | None = None,
    ) -> None:
        """
        Initialize the facade.

        Args:
            config: Storage configuration (from environment if omitted)
            settings: Settings store (created beside the database if omitted)
            replication: Replication session manager
        """
        self.config = config or StorageConfig.from_env()
        self.settings = settings or SettingsStore(self.config.settings_path)
        self.replication = replication or ReplicationSessionManager(
            self.settings, self.config.replication
        )

    def _new_store(self) -> LocalEventStore:
        return LocalEventStore(self.config.db_path, self.config.collection_name)

    def has_finished_first_sync(self) -> bool:
        return self.replication.has_finished_first_sync(self.config.collection_name)

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    async def connect(self) -> ConnectionHandle | None:
        """Open the store, provision the collection and start replication.

        Returns:
            A live handle, or None if anything failed (logged)
        """
        store: LocalEventStore | None = None
        try:
            sync_token = await self.fetch_setting(SettingName.SYNC_TOKEN)

            store = self._new_store()
            await store.initialize()

            session = await self.replication.start(store, sync_token)
            return ConnectionHandle(store=store, replication=session)
        except Exception as e:
            logger.error(f"Failed to connect to DB: {e}", exc_info=True)
            if store is not None:
                try:
                    await store.close()
                except Exception as close_error:
                    logger.warning(f"Error closing store after failed connect: {close_error}")
            return None

    async def disconnect(self, handle: ConnectionHandle) -> None:
        """Stop replication (dropping its observers) and close the store."""
        session, handle.replication = handle.replication, None
        await self.replication.stop(session)
        await handle.store.close()

    # =========================================================================
    # Queries
    # =========================================================================

    async def fetch_events(self, handle: ConnectionHandle, month: str) -> list[Event]:
        """Events of a YYYY-MM month, newest first. Empty on failure."""
        try:
            return await handle.store.fetch_by_month(month)
        except Exception as e:
            logger.error(f"Failed to fetch events for {month}: {e}")
            return []

    async def fetch_all_events(self, handle: ConnectionHandle) -> list[Event]:
        """All events, newest first. Empty on failure."""
        try:
            return await handle.store.fetch_all()
        except Exception as e:
            logger.error(f"Failed to fetch events: {e}")
            return []

    async def fetch_event(self, handle: ConnectionHandle, event_id: str) -> Event | None:
        """A live event by id, or None if it is unknown or the read failed."""
        try:
            return await handle.store.get(event_id)
        except Exception as e:
            logger.error(f"Failed to fetch event {event_id}: {e}")
            return None

    async def count_events(self, handle: ConnectionHandle) -> int | None:
        """Number of live events, or None if the count failed."""
        try:
            return await handle.store.count()
        except Exception as e:
            logger.error(f"Failed to count events: {e}")
            return None

    async def fetch_setting(self, name: SettingName | str) -> str:
        return await self.settings.get(name)

    # =========================================================================
    # Writes
    # =========================================================================

    async def save_event(self, handle: ConnectionHandle, event: Event) -> Event:
        """Insert a new event (sentinel id) or update an existing one.

        Raises:
            EventValidationError: If the name is blank
            EventNotFoundError: If updating an id that does not exist
        """
        if event.is_new:
            return await handle.store.insert(event)
        return await handle.store.update(event.id, name=event.name, date=event.date)

    async def save_setting(self, setting: Setting) -> None:
        await self.settings.set(setting.name, setting.value)

    async def delete_event(self, handle: ConnectionHandle, event_id: str) -> None:
        """
        Raises:
            EventNotFoundError: If no event has this id
        """
        await handle.store.remove(event_id)

    async def import_data(
        self,
        handle: ConnectionHandle,
        replace: bool,
        events: Iterable[Event | dict[str, Any]],
    ) -> int:
        """Load a backup into the store.

        With `replace`, all data is erased first (locally and remotely) and
        the collection recreated. Imports larger than the chunk size are
        inserted chunk by chunk with a pause in between, so replication to
        the remote stays under its request-rate limit.

        Returns:
            Number of events inserted
        """
        items = [item if isinstance(item, Event) else Event.from_dict(item) for item in events]

        if replace:
            await self.delete_all_data(handle)
            await handle.store.initialize()

        chunk_size = self.config.import_chunk_size
        if len(items) <= chunk_size:
            inserted = await handle.store.bulk_insert(items)
            return len(inserted)

        chunks = split_in_chunks(items, chunk_size)
        total = 0
        for index, chunk in enumerate(chunks):
            if index > 0:
                await asyncio.sleep(self.config.import_chunk_delay)
            inserted = await handle.store.bulk_insert(chunk)
            total += len(inserted)
            logger.info(f"Imported chunk {index + 1}/{len(chunks)} ({len(inserted)} events)")
        return total

    async def export_all_data(self, handle: ConnectionHandle) -> dict[str, list[dict[str, Any]]]:
        """Backup payload: every event without revisions, oldest first."""
        start, end = EXPORT_RANGE
        events = await handle.store.find_by_date_range(start, end)
        return {"events": [event.to_dict() for event in sort_by_date(events)]}

    async def delete_all_data(self, handle: ConnectionHandle) -> None:
        """Erase all events locally and, if sync is configured, remotely.

        Replication is stopped first so the erase cannot race a pull. The
        local collection and its storage are always gone before the remote
        erase is attempted. Settings are kept.

        Raises:
            ReplicationError, StorageConnectionError: If the remote erase fails
        """
        session, handle.replication = handle.replication, None
        await self.replication.stop(session)

        if handle.store.has_collection:
            await handle.store.remove_collection()
        await handle.store.erase_all()

        sync_token = await self.fetch_setting(SettingName.SYNC_TOKEN)
        if sync_token:
            try:
                remote = self.replication.remote_for(sync_token)
            except ValueError:
                logger.warning(
                    f"Skipping remote erase, unusable sync token {redact_locator(sync_token)}"
                )
                return
            try:
                await remote.erase()
            except StorageConnectionError:
                logger.error(f"Remote erase failed, {redact_locator(sync_token)} unreachable")
                raise
            finally:
                await remote.close()
