"""
Async file helpers for the local data directory.

The database itself goes through aiosqlite; these cover everything around
it: creating the data directory, the settings file (written atomically so a
crash never leaves half a token on disk), and removing a database together
with the journal files SQLite keeps beside it.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

from ..exceptions import StorageIOError

SQLITE_SIDECAR_SUFFIXES = ("-journal", "-wal", "-shm")


async def ensure_directory(path: Path) -> None:
    try:
        await aiofiles.os.makedirs(path, exist_ok=True)
    except OSError as e:
        raise StorageIOError("create_directory", str(path), e) from e


async def read_json(path: Path) -> dict[str, Any] | None:
    """Load a JSON document, or None when the file is missing or blank."""
    try:
        async with aiofiles.open(path, encoding="utf-8") as f:
            text = await f.read()
    except FileNotFoundError:
        return None
    except OSError as e:
        raise StorageIOError("read_json", str(path), e) from e

    if not text.strip():
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise StorageIOError("parse_json", str(path), e) from e


async def write_json_atomic(path: Path, data: dict[str, Any]) -> None:
    """Replace ``path`` with ``data`` in one step.

    The document is written and fsynced to a sibling temp file first, then
    moved over the target. Readers see either the old file or the new one.
    """
    payload = json.dumps(data, indent=2, sort_keys=True)
    await ensure_directory(path.parent)
    fd, scratch = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    os.close(fd)

    try:
        async with aiofiles.open(scratch, "w", encoding="utf-8") as f:
            await f.write(payload)
            await f.flush()
            os.fsync(f.fileno())
        await aiofiles.os.replace(scratch, path)
    except OSError as e:
        await _discard(Path(scratch))
        raise StorageIOError("write_json", str(path), e) from e


async def _discard(path: Path) -> None:
    try:
        await aiofiles.os.remove(path)
    except FileNotFoundError:
        pass


async def remove_database_files(path: Path) -> int:
    """Delete a SQLite database and its journals; returns how many existed."""
    removed = 0
    for suffix in ("", *SQLITE_SIDECAR_SUFFIXES):
        target = Path(f"{path}{suffix}")
        try:
            await aiofiles.os.remove(target)
        except FileNotFoundError:
            continue
        except OSError as e:
            raise StorageIOError("remove", str(target), e) from e
        removed += 1
    return removed
