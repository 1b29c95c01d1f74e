"""
Shared test configuration and fixtures.

Provides:
- A storage config rooted in a temporary directory, with no import pause
  and short replication intervals
- An in-memory remote document store that behaves like a CouchDB database
  (revision winners, tombstones, sequence-numbered changes feed)
- The same in-memory remote served over HTTP by an aiohttp test server
"""

import asyncio
import base64
import hashlib
import logging
from typing import Any

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from loggit_storage.config import ReplicationConfig, StorageConfig
from loggit_storage.database import EventDatabase
from loggit_storage.exceptions import StorageConnectionError
from loggit_storage.id_utils import (
    decode_history,
    encode_history,
    extend_history,
    make_revision,
    supersedes,
)
from loggit_storage.local import LocalEventStore, SettingsStore
from loggit_storage.sync import ReplicationSessionManager, RetryConfig

logger = logging.getLogger(__name__)

REMOTE_URL = "http://couch.test/loggit"
COUCH_USER = "admin"
COUCH_PASSWORD = "secret"


class FakeRemoteStore:
    """
    In-memory stand-in for RemoteDocumentStore.

    Keeps one winning document per id with its revision history plus the set
    of revisions it has seen, so revs_diff, new_edits=False writes, the
    changes feed and _bulk_get behave the way the replicator expects from a
    real remote.
    """

    def __init__(self, url: str = REMOTE_URL):
        self.url = url
        self.exists = False
        self.docs: dict[str, dict[str, Any]] = {}
        self.history: dict[str, list[str]] = {}
        self.known_revs: dict[str, set[str]] = {}
        self.doc_seq: dict[str, int] = {}
        self.seq = 0

        # Number of upcoming calls that fail as if the network were down
        self.fail_requests = 0
        self.closed = False
        self.erase_calls = 0
        self.bulk_calls: list[list[dict[str, Any]]] = []
        self.before_erase = None

    @property
    def checkpoint_id(self) -> str:
        return hashlib.md5(self.url.encode("utf-8")).hexdigest()

    def _maybe_fail(self) -> None:
        if self.fail_requests > 0:
            self.fail_requests -= 1
            raise StorageConnectionError(self.url)

    def _store(self, doc: dict[str, Any], history: list[str]) -> None:
        self.seq += 1
        doc_id = doc["_id"]
        self.docs[doc_id] = {k: v for k, v in doc.items() if k != "_revisions"}
        self.history[doc_id] = history
        self.known_revs.setdefault(doc_id, set()).update(history)
        self.doc_seq[doc_id] = self.seq

    def _edit(self, doc_id: str, body: dict[str, Any]) -> str:
        current = self.docs.get(doc_id)
        rev = make_revision(current["_rev"] if current else None, {"_id": doc_id, **body})
        history = extend_history(rev, self.history.get(doc_id, []))
        self._store({"_id": doc_id, "_rev": rev, **body}, history)
        return rev

    def put(self, doc_id: str, name: str, date: str) -> str:
        """Write a document directly, as another device would. Returns its revision."""
        return self._edit(doc_id, {"name": name, "date": date})

    def live_docs(self) -> dict[str, dict[str, Any]]:
        return {doc_id: doc for doc_id, doc in self.docs.items() if not doc.get("_deleted")}

    async def ensure_database(self) -> None:
        self._maybe_fail()
        self.exists = True

    async def changes(self, since: Any, limit: int, include_docs: bool = True) -> dict[str, Any]:
        self._maybe_fail()
        since = int(since or 0)
        rows = sorted((seq, doc_id) for doc_id, seq in self.doc_seq.items() if seq > since)
        rows = rows[:limit]
        results = []
        for seq, doc_id in rows:
            row = {"seq": seq, "id": doc_id, "changes": [{"rev": self.docs[doc_id]["_rev"]}]}
            if include_docs:
                row["doc"] = dict(self.docs[doc_id])
            results.append(row)
        last_seq = rows[-1][0] if rows else max(since, self.seq)
        return {"results": results, "last_seq": last_seq}

    async def bulk_get(self, refs: list[dict[str, str]]) -> list[dict[str, Any]]:
        self._maybe_fail()
        docs = []
        for ref in refs:
            doc = self.docs.get(ref["id"])
            if doc is not None and doc["_rev"] == ref["rev"]:
                docs.append({**doc, "_revisions": encode_history(self.history[ref["id"]])})
        return docs

    async def revs_diff(self, revisions: dict[str, list[str]]) -> dict[str, dict[str, Any]]:
        self._maybe_fail()
        diff = {}
        for doc_id, revs in revisions.items():
            missing = [rev for rev in revs if rev not in self.known_revs.get(doc_id, set())]
            if missing:
                diff[doc_id] = {"missing": missing}
        return diff

    async def bulk_docs(
        self, docs: list[dict[str, Any]], new_edits: bool = True
    ) -> list[dict[str, Any]]:
        self._maybe_fail()
        self.bulk_calls.append([dict(doc) for doc in docs])
        results = []
        for doc in docs:
            doc_id = doc["_id"]
            current = self.docs.get(doc_id)
            body = {k: v for k, v in doc.items() if k not in ("_id", "_rev", "_revisions")}

            if new_edits:
                if current is not None and doc.get("_rev") != current["_rev"]:
                    results.append(
                        {"id": doc_id, "error": "conflict", "reason": "Document update conflict."}
                    )
                    continue
                results.append({"id": doc_id, "rev": self._edit(doc_id, body), "ok": True})
                continue

            rev = doc["_rev"]
            history = decode_history(rev, doc.get("_revisions"))
            if current is None or supersedes(
                rev,
                history,
                bool(doc.get("_deleted")),
                current["_rev"],
                self.history.get(doc_id, []),
                bool(current.get("_deleted")),
            ):
                self._store(doc, history)
            else:
                self.known_revs.setdefault(doc_id, set()).update(history)
            results.append({"id": doc_id, "rev": rev, "ok": True})
        return results

    async def all_docs(self) -> list[dict[str, Any]]:
        self._maybe_fail()
        return [{"id": doc_id, "rev": doc["_rev"]} for doc_id, doc in self.live_docs().items()]

    async def erase(self) -> int:
        self._maybe_fail()
        self.erase_calls += 1
        if self.before_erase is not None:
            self.before_erase()
        rows = await self.all_docs()
        await self.bulk_docs(
            [{"_id": row["id"], "_rev": row["rev"], "_deleted": True} for row in rows]
        )
        return len(rows)

    async def close(self) -> None:
        self.closed = True


def create_couch_app(backend: FakeRemoteStore, database: str = "loggit") -> web.Application:
    """Serve a FakeRemoteStore over the CouchDB HTTP endpoints the client uses."""
    expected_auth = f"{COUCH_USER}:{COUCH_PASSWORD}"

    @web.middleware
    async def basic_auth(request: web.Request, handler):
        header = request.headers.get("Authorization", "")
        if not header.startswith("Basic "):
            return web.json_response({"error": "unauthorized"}, status=401)
        if base64.b64decode(header[6:]).decode("utf-8") != expected_auth:
            return web.json_response(
                {"error": "unauthorized", "reason": "Name or password is incorrect."}, status=401
            )
        return await handler(request)

    def require_db(request: web.Request) -> None:
        if request.match_info["db"] != database or not backend.exists:
            raise web.HTTPNotFound(
                text='{"error": "not_found", "reason": "Database does not exist."}',
                content_type="application/json",
            )

    async def get_db(request: web.Request) -> web.Response:
        require_db(request)
        return web.json_response({"db_name": database, "doc_count": len(backend.live_docs())})

    async def put_db(request: web.Request) -> web.Response:
        if backend.exists:
            return web.json_response({"error": "file_exists"}, status=412)
        backend.exists = True
        return web.json_response({"ok": True}, status=201)

    async def changes(request: web.Request) -> web.Response:
        require_db(request)
        limit = int(request.query.get("limit", "1000"))
        feed = await backend.changes(request.query.get("since", "0"), limit)
        if request.query.get("include_docs") != "true":
            for row in feed["results"]:
                row.pop("doc", None)
        return web.json_response(feed)

    async def bulk_get(request: web.Request) -> web.Response:
        require_db(request)
        refs = (await request.json())["docs"]
        found = {doc["_id"]: doc for doc in await backend.bulk_get(refs)}
        if request.query.get("revs") != "true":
            for doc in found.values():
                doc.pop("_revisions", None)
        results = [
            {
                "id": ref["id"],
                "docs": [
                    {"ok": found[ref["id"]]}
                    if ref["id"] in found
                    else {"error": {"id": ref["id"], "rev": ref["rev"], "error": "not_found"}}
                ],
            }
            for ref in refs
        ]
        return web.json_response({"results": results})

    async def revs_diff(request: web.Request) -> web.Response:
        require_db(request)
        return web.json_response(await backend.revs_diff(await request.json()))

    async def bulk_docs(request: web.Request) -> web.Response:
        require_db(request)
        body = await request.json()
        results = await backend.bulk_docs(body["docs"], new_edits=body.get("new_edits", True))
        return web.json_response(results, status=201)

    async def all_docs(request: web.Request) -> web.Response:
        require_db(request)
        rows = [
            {"id": row["id"], "key": row["id"], "value": {"rev": row["rev"]}}
            for row in await backend.all_docs()
        ]
        return web.json_response({"total_rows": len(rows), "offset": 0, "rows": rows})

    app = web.Application(middlewares=[basic_auth])
    app.router.add_get("/{db}", get_db)
    app.router.add_put("/{db}", put_db)
    app.router.add_get("/{db}/_changes", changes)
    app.router.add_post("/{db}/_revs_diff", revs_diff)
    app.router.add_post("/{db}/_bulk_get", bulk_get)
    app.router.add_post("/{db}/_bulk_docs", bulk_docs)
    app.router.add_get("/{db}/_all_docs", all_docs)
    return app


@pytest.fixture
def replication_config():
    """Replication settings with short intervals for fast tests."""
    return ReplicationConfig(
        batch_size=50,
        poll_interval=0.05,
        request_timeout=5.0,
        retry=RetryConfig(backoff_base=0.01, backoff_max=0.05),
    )


@pytest.fixture
def storage_config(tmp_path, replication_config):
    """Storage config rooted in a temporary directory, without import pauses."""
    return StorageConfig(
        data_dir=tmp_path / "data",
        import_chunk_delay=0.0,
        replication=replication_config,
    )


@pytest.fixture
async def event_store(tmp_path):
    """Fixture providing an initialized event store on disk."""
    store = await LocalEventStore.create(tmp_path / "events.sqlite3")
    yield store
    await store.close()


@pytest.fixture
def settings_store(storage_config):
    return SettingsStore(storage_config.settings_path)


@pytest.fixture
def fake_remote():
    """Fixture providing an in-memory remote database."""
    return FakeRemoteStore()


@pytest.fixture
def remote_factory(fake_remote):
    """Remote factory that records the tokens it was asked for."""
    requested: list[str] = []

    def factory(locator: str) -> FakeRemoteStore:
        requested.append(locator)
        fake_remote.closed = False
        return fake_remote

    factory.requested = requested
    return factory


@pytest.fixture
def replication_manager(settings_store, replication_config, remote_factory):
    return ReplicationSessionManager(settings_store, replication_config, remote_factory)


@pytest.fixture
def database(storage_config, settings_store, replication_manager):
    """Fixture providing an EventDatabase wired to the in-memory remote."""
    return EventDatabase(storage_config, settings_store, replication_manager)


@pytest.fixture
async def couch_server():
    """
    Fixture providing the in-memory remote behind a real HTTP server.

    Yields (server, backend); the sync token for the database is
    http://admin:secret@{host}:{port}/loggit.
    """
    backend = FakeRemoteStore()
    server = TestServer(create_couch_app(backend))
    await server.start_server()
    yield server, backend
    await server.close()



def couch_locator(
    server: TestServer, user: str = COUCH_USER, password: str = COUCH_PASSWORD
) -> str:
    return f"http://{user}:{password}@{server.host}:{server.port}/loggit"


@pytest.fixture
def couch_token(couch_server):
    """Builds sync tokens for the running test server."""
    server, _ = couch_server

    def build(user: str = COUCH_USER, password: str = COUCH_PASSWORD) -> str:
        return couch_locator(server, user, password)

    return build


@pytest.fixture
def wait_until():
    """Poll a condition until it holds, failing the test after a timeout."""

    async def wait(predicate, timeout: float = 3.0, interval: float = 0.01) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("Condition not met before timeout")
            await asyncio.sleep(interval)

    return wait
