"""
Replication session management.

Starts and stops replication sessions for a local event store and turns
their signals into settings updates (last sync date) and the per-collection
"initial sync finished" flag.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from ..local.event_store import LocalEventStore
from ..local.settings_store import SettingsStore
from ..types import SettingName
from ..utils import sync_timestamp
from .remote import RemoteDocumentStore, redact_locator
from .replicator import ChangeInfo, CycleResult, ReplicationSession
from .signals import Subscription

if TYPE_CHECKING:
    from ..config import ReplicationConfig

logger = logging.getLogger(__name__)

RemoteFactory = Callable[[str], RemoteDocumentStore]


class ReplicationSessionManager:
    """Owns the observers attached to replication sessions.

    Example:
        >>> manager = ReplicationSessionManager(settings, config.replication)
        >>> session = await manager.start(store, sync_token)
        >>> ...
        >>> await manager.stop(session)
    """

    def __init__(
        self,
        settings: SettingsStore,
        config: ReplicationConfig,
        remote_factory: RemoteFactory | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            settings: Settings store receiving lastSyncDate updates
            config: Replication configuration for new sessions
            remote_factory: Builds the remote client for a sync token
        """
        self.settings = settings
        self.config = config
        self._remote_factory = remote_factory or (
            lambda locator: RemoteDocumentStore(locator, request_timeout=config.request_timeout)
        )
        self._finished_first_sync: dict[str, bool] = {}
        self._subscriptions: dict[int, list[Subscription]] = {}

    def remote_for(self, locator: str) -> RemoteDocumentStore:
        """Build a remote client for a sync token."""
        return self._remote_factory(locator)

    def has_finished_first_sync(self, collection_name: str) -> bool:
        return self._finished_first_sync.get(collection_name, False)

    def _mark_first_sync(self, collection_name: str) -> None:
        self._finished_first_sync[collection_name] = True

    async def update_sync_date(self, alive: bool = True) -> None:
        """Record a successful sync signal. A down signal keeps the last value."""
        if alive:
            await self.settings.set(SettingName.LAST_SYNC_DATE, sync_timestamp())

    async def start(self, store: LocalEventStore, locator: str) -> ReplicationSession | None:
        """Start live replication for a store.

        Args:
            store: Open local event store
            locator: Sync token; empty disables replication

        Returns:
            The running session, or None when sync is disabled or the sync
            token is not a usable URL (the local store stays usable)
        """
        if not locator:
            # A purely local installation counts as synced from the start
            self._mark_first_sync(store.name)
            return None

        try:
            remote = self.remote_for(locator)
        except ValueError as e:
            logger.error(
                f"Sync disabled for '{store.name}', unusable sync token "
                f"{redact_locator(locator)}: {e}"
            )
            self._mark_first_sync(store.name)
            return None

        session = ReplicationSession(store, remote, self.config)
        self._finished_first_sync[store.name] = False

        async def on_complete(_: CycleResult) -> None:
            self._mark_first_sync(store.name)

        async def on_change(change: ChangeInfo) -> None:
            await self.update_sync_date(change.ok)

        self._subscriptions[id(session)] = [
            session.alive.subscribe(self.update_sync_date),
            session.changes.subscribe(on_change),
            session.complete.subscribe(on_complete),
        ]

        await session.start()
        logger.info(f"Sync enabled for '{store.name}' with {redact_locator(locator)}")
        return session

    async def stop(self, session: ReplicationSession | None) -> None:
        """Unsubscribe the session's observers, then stop it. Idempotent.

        Local data is left untouched.
        """
        if session is None:
            return
        for subscription in self._subscriptions.pop(id(session), []):
            subscription.unsubscribe()
        await session.cancel()
