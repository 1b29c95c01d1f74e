"""
SQLite-backed event collection.

Each event is stored as a single row holding its winning revision, a
tombstone flag and an update sequence number. The sequence numbers double as
the local changes feed that replication pushes from, so deleted events stay
behind as tombstones until the whole store is erased.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import aiosqlite

from ..exceptions import (
    EventNotFoundError,
    EventValidationError,
    QueryError,
    StorageConnectionError,
    StorageIOError,
)
from ..id_utils import (
    decode_history,
    encode_history,
    extend_history,
    generate_event_id,
    make_revision,
    parse_revision,
    supersedes,
)
from ..types import Event
from ..utils import is_valid_date, month_bounds, sort_by_date, today
from .file_ops import ensure_directory, remove_database_files

logger = logging.getLogger(__name__)

# Ranges used to approximate "all time" for lexical date queries
ALL_TIME_RANGE = ("2000-01", "2100-31")

INVALID_NAME_MESSAGE = "The event needs a valid name."

_COLLECTION_NAME_RE = re.compile(r"^[a-z][a-z0-9_]*$")


class LocalEventStore:
    """
    Embedded document collection for events.

    Features:
    - Date range queries (lexical, on YYYY-MM-DD strings)
    - Insert / update / delete with revision tracking
    - Bulk insert in a single transaction
    - Changes feed and revision-aware writes for replication
    - Full erase of the underlying database file
    """

    def __init__(self, db_path: str | Path, collection_name: str = "events"):
        """
        Initialize the store.

        Args:
            db_path: SQLite database file, or ":memory:"
            collection_name: Table holding the events
        """
        if not _COLLECTION_NAME_RE.match(collection_name):
            raise ValueError(f"Invalid collection name: {collection_name!r}")

        self.db_path = db_path
        self.name = collection_name
        self.conn: aiosqlite.Connection | None = None
        self._has_collection = False
        self._write_lock = asyncio.Lock()
        self._changed = asyncio.Event()

    @classmethod
    async def create(cls, db_path: str | Path, collection_name: str = "events") -> LocalEventStore:
        """Create, open and provision a store."""
        store = cls(db_path, collection_name)
        await store.initialize()
        return store

    @property
    def is_open(self) -> bool:
        return self.conn is not None

    @property
    def has_collection(self) -> bool:
        """True while the store is open and the event collection exists."""
        return self.conn is not None and self._has_collection

    @property
    def is_in_memory(self) -> bool:
        return str(self.db_path) == ":memory:"

    async def initialize(self) -> None:
        """Open the database (if needed) and provision the event collection."""
        if self.conn is None:
            try:
                if not self.is_in_memory:
                    await ensure_directory(Path(self.db_path).parent)
                self.conn = await aiosqlite.connect(str(self.db_path))
                self.conn.row_factory = aiosqlite.Row
            except (aiosqlite.Error, StorageIOError) as e:
                raise StorageConnectionError(str(self.db_path), e) from e

        try:
            await self.conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.name} (
                    id TEXT NOT NULL PRIMARY KEY,
                    rev TEXT NOT NULL,
                    name TEXT,
                    date TEXT,
                    deleted INTEGER NOT NULL DEFAULT 0,
                    seq INTEGER NOT NULL,
                    history TEXT NOT NULL DEFAULT '[]'
                )
            """)
            await self.conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{self.name}_date ON {self.name}(deleted, date)"
            )
            await self.conn.execute(
                f"CREATE UNIQUE INDEX IF NOT EXISTS idx_{self.name}_seq ON {self.name}(seq)"
            )
            await self.conn.execute("""
                CREATE TABLE IF NOT EXISTS meta (
                    key TEXT NOT NULL PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)
            await self.conn.commit()
        except aiosqlite.Error as e:
            raise StorageConnectionError(f"{self.db_path}#{self.name}", e) from e

        self._has_collection = True
        logger.debug(f"Event collection '{self.name}' ready in {self.db_path}")

    async def close(self) -> None:
        """Close the database connection. Safe to call more than once."""
        conn, self.conn = self.conn, None
        self._has_collection = False
        if conn is not None:
            await conn.close()
            # Wake anyone waiting for changes so they notice the store is gone
            self._changed.set()

    def _require_collection(self) -> aiosqlite.Connection:
        if self.conn is None or not self._has_collection:
            raise StorageConnectionError(f"{self.db_path}#{self.name}")
        return self.conn

    # =========================================================================
    # Queries
    # =========================================================================

    async def find_by_date_range(self, start: str, end: str) -> list[Event]:
        """Live events with start <= date <= end (string comparison), in id order."""
        conn = self._require_collection()
        try:
            async with conn.execute(
                f"SELECT id, rev, name, date FROM {self.name} "
                "WHERE deleted = 0 AND date >= ? AND date <= ? ORDER BY id",
                (start, end),
            ) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise QueryError("find_by_date_range", e) from e

        return [
            Event(id=row["id"], name=row["name"], date=row["date"], rev=row["rev"]) for row in rows
        ]

    async def fetch_by_month(self, month: str) -> list[Event]:
        """Events in a YYYY-MM month, newest date first.

        The range is month-01..month-31 compared as strings, which also
        covers months shorter than 31 days.
        """
        start, end = month_bounds(month)
        return sort_by_date(await self.find_by_date_range(start, end), reverse=True)

    async def fetch_all(self) -> list[Event]:
        """All events, newest date first."""
        start, end = ALL_TIME_RANGE
        return sort_by_date(await self.find_by_date_range(start, end), reverse=True)

    async def get(self, event_id: str) -> Event | None:
        """Get a live event by id."""
        conn = self._require_collection()
        try:
            row = await self._get_row(conn, event_id)
        except aiosqlite.Error as e:
            raise QueryError("get", e) from e

        if row is None or row["deleted"]:
            return None
        return Event(id=row["id"], name=row["name"], date=row["date"], rev=row["rev"])

    async def count(self) -> int:
        """Number of live events."""
        conn = self._require_collection()
        try:
            async with conn.execute(
                f"SELECT COUNT(*) FROM {self.name} WHERE deleted = 0"
            ) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise QueryError("count", e) from e
        return int(row[0]) if row else 0

    # =========================================================================
    # Writes
    # =========================================================================

    async def insert(self, event: Event) -> Event:
        """Insert a new event.

        Generates an id when the event carries the new-event sentinel and
        replaces an invalid date with today's date.

        Raises:
            EventValidationError: If the name is blank or the id is taken
        """
        name, date = self._normalize(event.name, event.date)
        event_id = generate_event_id() if event.is_new else event.id

        async with self._write_lock:
            conn = self._require_collection()
            try:
                existing = await self._get_row(conn, event_id)
                if existing is not None and not existing["deleted"]:
                    raise EventValidationError(
                        f"An event with id {event_id} already exists.", field="id", value=event_id
                    )
                stored = await self._write(
                    conn, event_id, name, date, parent=existing
                )
                await conn.commit()
            except aiosqlite.Error as e:
                await conn.rollback()
                raise StorageIOError("insert", str(self.db_path), e) from e

        self._changed.set()
        return stored

    async def update(
        self, event_id: str, name: str | None = None, date: str | None = None
    ) -> Event:
        """Update the name and/or date of an existing event.

        Raises:
            EventValidationError: If the new name is blank
            EventNotFoundError: If no live event has this id
        """
        async with self._write_lock:
            conn = self._require_collection()
            try:
                existing = await self._get_row(conn, event_id)
                if existing is None or existing["deleted"]:
                    raise EventNotFoundError(event_id)

                new_name, new_date = self._normalize(
                    existing["name"] if name is None else name,
                    existing["date"] if date is None else date,
                )
                stored = await self._write(
                    conn, event_id, new_name, new_date, parent=existing
                )
                await conn.commit()
            except aiosqlite.Error as e:
                await conn.rollback()
                raise StorageIOError("update", str(self.db_path), e) from e

        self._changed.set()
        return stored

    async def remove(self, event_id: str) -> None:
        """Delete an event, leaving a tombstone for replication.

        Raises:
            EventNotFoundError: If no live event has this id
        """
        async with self._write_lock:
            conn = self._require_collection()
            try:
                existing = await self._get_row(conn, event_id)
                if existing is None or existing["deleted"]:
                    raise EventNotFoundError(event_id)
                await self._write(
                    conn, event_id, None, None, parent=existing, deleted=True
                )
                await conn.commit()
            except aiosqlite.Error as e:
                await conn.rollback()
                raise StorageIOError("remove", str(self.db_path), e) from e

        self._changed.set()

    async def bulk_insert(self, events: Iterable[Event | dict[str, Any]]) -> list[Event]:
        """Insert many events in one transaction.

        Documents only need to satisfy the schema (string name and date);
        names and dates are stored as given. Events whose id already holds a
        live document are skipped.

        Returns:
            The inserted events, in input order

        Raises:
            EventValidationError: If a document does not match the schema
        """
        prepared: list[Event] = []
        for item in events:
            event = item if isinstance(item, Event) else Event.from_dict(item)
            if not isinstance(event.name, str) or not isinstance(event.date, str):
                raise EventValidationError(
                    "Events need a name and a date.",
                    field="name" if not isinstance(event.name, str) else "date",
                )
            event_id = generate_event_id() if event.is_new else event.id
            prepared.append(Event(id=event_id, name=event.name, date=event.date))

        inserted: list[Event] = []
        async with self._write_lock:
            conn = self._require_collection()
            try:
                for event in prepared:
                    existing = await self._get_row(conn, event.id)
                    if existing is not None and not existing["deleted"]:
                        logger.warning(f"Skipping duplicate event id in bulk insert: {event.id}")
                        continue
                    inserted.append(
                        await self._write(
                            conn,
                            event.id,
                            event.name,
                            event.date,
                            parent=existing,
                        )
                    )
                await conn.commit()
            except aiosqlite.Error as e:
                await conn.rollback()
                raise StorageIOError("bulk_insert", str(self.db_path), e) from e

        if inserted:
            self._changed.set()
        logger.debug(f"Bulk inserted {len(inserted)}/{len(prepared)} events")
        return inserted

    async def remove_collection(self) -> None:
        """Drop the event collection, tombstones and checkpoints included."""
        conn = self._require_collection()
        async with self._write_lock:
            try:
                await conn.execute(f"DROP TABLE IF EXISTS {self.name}")
                await conn.execute("DELETE FROM meta WHERE key LIKE ?", (f"{self.name}:%",))
                await conn.commit()
            except aiosqlite.Error as e:
                await conn.rollback()
                raise StorageIOError("remove_collection", str(self.db_path), e) from e
            self._has_collection = False

        logger.info(f"Removed event collection '{self.name}'")

    async def erase_all(self) -> None:
        """Destroy the underlying storage, including all change history.

        The store is closed afterwards; call `initialize()` to start over.
        """
        await self.close()
        if self.is_in_memory:
            return
        removed = await remove_database_files(Path(self.db_path))
        logger.info(f"Erased local event storage ({removed} files) at {self.db_path}")

    # =========================================================================
    # Replication support
    # =========================================================================

    async def changes_since(self, since: int, limit: int) -> tuple[list[dict[str, Any]], int]:
        """Documents written after sequence `since`, oldest first.

        Returns:
            Tuple of (replication documents, last sequence seen)
        """
        conn = self._require_collection()
        try:
            async with conn.execute(
                f"SELECT id, rev, name, date, deleted, seq, history FROM {self.name} "
                "WHERE seq > ? ORDER BY seq LIMIT ?",
                (since, limit),
            ) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise QueryError("changes_since", e) from e

        docs = [self._row_to_doc(row) for row in rows]
        last_seq = rows[-1]["seq"] if rows else since
        return docs, last_seq

    async def get_revisions(self, event_ids: Iterable[str]) -> dict[str, str]:
        """Current revision (live or deleted) for each known id."""
        conn = self._require_collection()
        ids = list(event_ids)
        if not ids:
            return {}

        placeholders = ", ".join("?" for _ in ids)
        try:
            async with conn.execute(
                f"SELECT id, rev FROM {self.name} WHERE id IN ({placeholders})", ids
            ) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise QueryError("get_revisions", e) from e
        return {row["id"]: row["rev"] for row in rows}

    async def apply_replicated(self, docs: Iterable[dict[str, Any]]) -> int:
        """Store documents received from a replica, keeping their revisions.

        A document replaces the stored one when it descends from it (its
        `_revisions` list the stored revision) or, for unrelated branches,
        when it wins: live beats deleted, then generation, then hash. Applying
        the same batch twice, or in any order, converges.

        Returns:
            Number of documents written
        """
        written = 0
        async with self._write_lock:
            conn = self._require_collection()
            try:
                for doc in docs:
                    doc_id = doc.get("_id")
                    rev = doc.get("_rev")
                    if not isinstance(doc_id, str) or not isinstance(rev, str):
                        continue
                    if doc_id.startswith("_"):
                        continue
                    try:
                        parse_revision(rev)
                    except ValueError:
                        logger.warning(f"Ignoring {doc_id}: bad revision {rev!r}")
                        continue

                    deleted = bool(doc.get("_deleted"))
                    name, date = doc.get("name"), doc.get("date")
                    if not deleted and not (isinstance(name, str) and isinstance(date, str)):
                        logger.warning(f"Ignoring {doc_id}: fails the event schema")
                        continue

                    history = decode_history(rev, doc.get("_revisions"))
                    existing = await self._get_row(conn, doc_id)
                    if existing is not None and not supersedes(
                        rev,
                        history,
                        deleted,
                        existing["rev"],
                        self._history_of(existing),
                        bool(existing["deleted"]),
                    ):
                        continue

                    await self._upsert(
                        conn,
                        doc_id,
                        rev,
                        None if deleted else name,
                        None if deleted else date,
                        deleted,
                        history,
                    )
                    written += 1
                await conn.commit()
            except aiosqlite.Error as e:
                await conn.rollback()
                raise StorageIOError("apply_replicated", str(self.db_path), e) from e

        if written:
            self._changed.set()
        return written

    async def get_checkpoint(self, key: str) -> Any:
        """Read a replication checkpoint, or None."""
        conn = self._require_collection()
        try:
            async with conn.execute(
                "SELECT value FROM meta WHERE key = ?", (f"{self.name}:checkpoint:{key}",)
            ) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise QueryError("get_checkpoint", e) from e
        return json.loads(row["value"]) if row else None

    async def set_checkpoint(self, key: str, value: Any) -> None:
        conn = self._require_collection()
        try:
            await conn.execute(
                "INSERT INTO meta (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (f"{self.name}:checkpoint:{key}", json.dumps(value)),
            )
            await conn.commit()
        except aiosqlite.Error as e:
            raise StorageIOError("set_checkpoint", str(self.db_path), e) from e

    async def wait_for_change(self) -> None:
        """Block until the next local write (or until the store closes)."""
        await self._changed.wait()
        self._changed.clear()

    # =========================================================================
    # Internals
    # =========================================================================

    @staticmethod
    def _normalize(name: Any, date: Any) -> tuple[str, str]:
        if not isinstance(name, str) or not name.strip():
            raise EventValidationError(INVALID_NAME_MESSAGE, field="name")
        if not is_valid_date(date):
            date = today()
        return name, date

    async def _get_row(self, conn: aiosqlite.Connection, event_id: str) -> aiosqlite.Row | None:
        async with conn.execute(
            f"SELECT id, rev, name, date, deleted, seq, history FROM {self.name} WHERE id = ?",
            (event_id,),
        ) as cursor:
            return await cursor.fetchone()

    async def _write(
        self,
        conn: aiosqlite.Connection,
        event_id: str,
        name: str | None,
        date: str | None,
        parent: aiosqlite.Row | None,
        deleted: bool = False,
    ) -> Event:
        """Write a local edit as a child of the stored revision (if any)."""
        content: dict[str, Any] = {"_deleted": True} if deleted else {"name": name, "date": date}
        previous = parent["rev"] if parent is not None else None
        rev = make_revision(previous, {"_id": event_id, **content})
        history = extend_history(rev, self._history_of(parent) if parent is not None else ())
        await self._upsert(conn, event_id, rev, name, date, deleted, history)
        return Event(id=event_id, name=name or "", date=date or "", rev=rev)

    async def _upsert(
        self,
        conn: aiosqlite.Connection,
        event_id: str,
        rev: str,
        name: str | None,
        date: str | None,
        deleted: bool,
        history: list[str],
    ) -> None:
        async with conn.execute(f"SELECT COALESCE(MAX(seq), 0) + 1 FROM {self.name}") as cursor:
            row = await cursor.fetchone()
        seq = int(row[0])

        await conn.execute(
            f"INSERT INTO {self.name} (id, rev, name, date, deleted, seq, history) "
            "VALUES (?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET rev = excluded.rev, name = excluded.name, "
            "date = excluded.date, deleted = excluded.deleted, seq = excluded.seq, "
            "history = excluded.history",
            (event_id, rev, name, date, int(deleted), seq, json.dumps(history)),
        )

    @staticmethod
    def _history_of(row: aiosqlite.Row) -> list[str]:
        return json.loads(row["history"]) or [row["rev"]]

    @classmethod
    def _row_to_doc(cls, row: aiosqlite.Row) -> dict[str, Any]:
        """Convert a row to the replication wire form."""
        doc: dict[str, Any] = {"_id": row["id"], "_rev": row["rev"]}
        if row["deleted"]:
            doc["_deleted"] = True
        else:
            doc.update(name=row["name"], date=row["date"])
        doc["_revisions"] = encode_history(cls._history_of(row))
        return doc
