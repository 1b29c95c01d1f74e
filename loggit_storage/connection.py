"""
Connection lifecycle.

`ConnectionManager` owns the one live `ConnectionHandle`. Callers ask it for
a handle before every operation instead of keeping their own reference, so
nobody operates on a handle that was torn down by a reconnect.

States:
    DISCONNECTED -> CONNECTING       first use
    CONNECTING   -> CONNECTED        connect() succeeded
    CONNECTED    -> CONNECTED        handle still live, reused
    *            -> RECONNECTING     handle no longer live, or force_reload
    RECONNECTING -> CONNECTED | DISCONNECTED
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from types import TracebackType

from .database import ConnectionHandle, EventDatabase

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class ConnectionManager:
    """Creates, reuses and tears down the connection handle.

    Overlapping `ensure_connection` calls share a single in-flight connect,
    and the previous handle is always torn down before a new one is created.

    Example:
        >>> async with ConnectionManager(EventDatabase(config)) as connection:
        ...     handle = await connection.ensure_connection()
        ...     events = await connection.database.fetch_events(handle, "2024-03")
    """

    def __init__(self, database: EventDatabase) -> None:
        self.database = database
        self._state = ConnectionState.DISCONNECTED
        self._handle: ConnectionHandle | None = None
        self._pending: asyncio.Future[ConnectionHandle | None] | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def handle(self) -> ConnectionHandle | None:
        return self._handle

    @property
    def is_connected(self) -> bool:
        return (
            self._state == ConnectionState.CONNECTED
            and self._handle is not None
            and self._handle.is_live
        )

    async def ensure_connection(self, force_reload: bool = False) -> ConnectionHandle | None:
        """Return a live handle, connecting or reconnecting if needed.

        Args:
            force_reload: Tear down and reconnect even if the handle is live

        Returns:
            The live handle, or None if connecting failed (retry later)
        """
        if not force_reload and self.is_connected:
            return self._handle

        pending = self._pending
        if pending is None:
            pending = asyncio.ensure_future(self._reconnect())
            self._pending = pending
            pending.add_done_callback(self._clear_pending)

        # Shielded so a cancelled caller does not abort the shared attempt
        return await asyncio.shield(pending)

    def _clear_pending(self, future: asyncio.Future[ConnectionHandle | None]) -> None:
        if self._pending is future:
            self._pending = None

    async def _reconnect(self) -> ConnectionHandle | None:
        if self._handle is not None or self._state == ConnectionState.CONNECTED:
            self._state = ConnectionState.RECONNECTING
        else:
            self._state = ConnectionState.CONNECTING

        await self._release()

        handle = await self.database.connect()
        if handle is None:
            self._state = ConnectionState.DISCONNECTED
            logger.warning("Connection attempt failed, staying disconnected")
            return None

        self._handle = handle
        self._state = ConnectionState.CONNECTED
        return handle

    async def _release(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            await self.database.disconnect(handle)
        except Exception as e:
            logger.error(f"Error cleaning up DB: {e}", exc_info=True)

    async def teardown(self) -> None:
        """Release the current handle, if any. Safe to call repeatedly."""
        if self._pending is not None:
            await asyncio.shield(self._pending)
        await self._release()
        self._state = ConnectionState.DISCONNECTED

    async def __aenter__(self) -> ConnectionManager:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.teardown()
