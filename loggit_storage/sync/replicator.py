"""
Live bidirectional replication between the local event store and a remote.

Each cycle:
- Push: local changes since the push checkpoint -> remote (revs_diff + bulk_docs)
- Pull: remote changes since the pull checkpoint -> local (_changes + _bulk_get
  with revision history, so descendants replace ancestors)
- Checkpoints advance after every batch, so an interrupted cycle resumes
- Failures back off exponentially and retry until the session is cancelled
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..local.event_store import LocalEventStore
from ..logging_utils import StorageLoggerAdapter
from .remote import RemoteDocumentStore
from .signals import Observable

if TYPE_CHECKING:
    from ..config import ReplicationConfig

logger = logging.getLogger(__name__)


class ReplicationDirection(Enum):
    PUSH = "push"
    PULL = "pull"


@dataclass
class ChangeInfo:
    """Acknowledgement for one replicated batch."""

    direction: ReplicationDirection
    docs_read: int = 0
    docs_written: int = 0
    errors: list[str] = field(default_factory=list)
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass
class CycleResult:
    """Totals for one push + pull cycle."""

    pushed: int = 0
    pulled: int = 0
    errors: list[str] = field(default_factory=list)


class ReplicationSession:
    """A running replication between one local store and one remote.

    Signals:
        alive: bool, published whenever liveness changes
        changes: ChangeInfo, published after each batch that read documents
        complete: CycleResult, published once after the first full cycle
    """

    def __init__(
        self,
        store: LocalEventStore,
        remote: RemoteDocumentStore,
        config: ReplicationConfig,
    ) -> None:
        self.store = store
        self.remote = remote
        self.config = config

        self.alive: Observable[bool] = Observable("alive")
        self.changes: Observable[ChangeInfo] = Observable("changes")
        self.complete: Observable[CycleResult] = Observable("complete")

        self._is_alive: bool | None = None
        self._first_sync_done = False
        self._task: asyncio.Task[None] | None = None
        self._remote_ready = False
        self.log = StorageLoggerAdapter(logger, {"collection": store.name, "remote": remote.url})

    @property
    def is_alive(self) -> bool:
        return bool(self._is_alive)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def first_sync_done(self) -> bool:
        return self._first_sync_done

    @property
    def _push_key(self) -> str:
        return f"push:{self.remote.checkpoint_id}"

    @property
    def _pull_key(self) -> str:
        return f"pull:{self.remote.checkpoint_id}"

    async def start(self) -> None:
        """Start replicating in the background."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name=f"replication:{self.remote.url}")
        self.log.info(f"Replication started: {self.store.name} <-> {self.remote.url}")

    async def cancel(self) -> None:
        """Stop replicating and release the remote connection. Idempotent."""
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            self.log.info(f"Replication stopped: {self.store.name} <-> {self.remote.url}")
        await self.remote.close()

    async def run_once(self) -> CycleResult:
        """Run a single push + pull cycle.

        Raises:
            ReplicationError, StorageConnectionError: If the remote is unreachable
        """
        if not self._remote_ready:
            await self.remote.ensure_database()
            self._remote_ready = True

        result = CycleResult()
        pushed, push_errors = await self._push()
        pulled, pull_errors = await self._pull()
        result.pushed = pushed
        result.pulled = pulled
        result.errors = push_errors + pull_errors
        return result

    async def _run(self) -> None:
        """Main loop with retry and backoff."""
        retry = self.config.retry
        attempt = 0

        while True:
            try:
                result = await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                await self._set_alive(False)

                if not self.store.has_collection:
                    self.log.info("Local store closed, replication ending")
                    return

                if not retry.should_retry(attempt):
                    self.log.error(
                        f"Replication giving up after {attempt + 1} attempts "
                        f"({self.remote.url}): {e}"
                    )
                    return

                delay = retry.delay_for(attempt)
                attempt += 1
                self.log.warning(
                    f"Replication failed (attempt {attempt}), retrying in {delay:.1f}s: {e}"
                )
                await asyncio.sleep(delay)
                continue

            attempt = 0
            await self._set_alive(True)

            if not self._first_sync_done:
                self._first_sync_done = True
                self.log.info(
                    f"Initial sync finished: pushed={result.pushed} pulled={result.pulled}"
                )
                await self.complete.emit(result)

            await self._wait_for_work()

    async def _wait_for_work(self) -> None:
        """Idle until a local write happens or the poll interval passes."""
        try:
            await asyncio.wait_for(self.store.wait_for_change(), timeout=self.config.poll_interval)
        except asyncio.TimeoutError:
            pass

    async def _set_alive(self, alive: bool) -> None:
        if self._is_alive is alive:
            return
        self._is_alive = alive
        self.log.debug(f"Replication liveness changed: {alive}")
        await self.alive.emit(alive)

    async def _push(self) -> tuple[int, list[str]]:
        """Push local changes to the remote.

        Returns:
            Tuple of (documents written remotely, error messages)
        """
        since = await self.store.get_checkpoint(self._push_key) or 0
        batch_size = self.config.batch_size
        written = 0
        errors: list[str] = []

        while True:
            docs, last_seq = await self.store.changes_since(since, batch_size)
            if not docs:
                break

            diff = await self.remote.revs_diff({doc["_id"]: [doc["_rev"]] for doc in docs})
            missing = [
                doc
                for doc in docs
                if doc["_rev"] in (diff.get(doc["_id"]) or {}).get("missing", [])
            ]

            info = ChangeInfo(direction=ReplicationDirection.PUSH, docs_read=len(docs))
            if missing:
                results = await self.remote.bulk_docs(missing, new_edits=False)
                info.errors = [_describe_failure(r) for r in results if "error" in r]
                info.docs_written = len(missing) - len(info.errors)

            since = last_seq
            await self.store.set_checkpoint(self._push_key, since)

            written += info.docs_written
            errors.extend(info.errors)
            await self.changes.emit(info)

            if len(docs) < batch_size:
                break

        return written, errors

    async def _pull(self) -> tuple[int, list[str]]:
        """Pull remote changes into the local store.

        Returns:
            Tuple of (documents written locally, error messages)
        """
        since = await self.store.get_checkpoint(self._pull_key) or 0
        batch_size = self.config.batch_size
        written = 0

        while True:
            feed = await self.remote.changes(since=since, limit=batch_size, include_docs=False)
            results = feed.get("results") or []
            last_seq = feed.get("last_seq", since)

            if not results:
                if last_seq != since:
                    await self.store.set_checkpoint(self._pull_key, last_seq)
                break

            # Documents are fetched with their revision history so the store
            # can tell a descendant edit from an unrelated branch
            refs = [
                {"id": row["id"], "rev": row["changes"][0]["rev"]}
                for row in results
                if row.get("changes") and not str(row.get("id", "")).startswith("_design/")
            ]
            applied = await self.store.apply_replicated(await self.remote.bulk_get(refs))

            since = last_seq
            await self.store.set_checkpoint(self._pull_key, since)

            written += applied
            await self.changes.emit(
                ChangeInfo(
                    direction=ReplicationDirection.PULL,
                    docs_read=len(results),
                    docs_written=applied,
                )
            )

            if len(results) < batch_size:
                break

        return written, []


def _describe_failure(result: dict[str, Any]) -> str:
    return f"{result.get('id', '?')}: {result.get('error')} ({result.get('reason', '')})"
