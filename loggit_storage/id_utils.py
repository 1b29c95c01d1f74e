"""ID and revision utilities for event documents.

Centralizes the ID and revision formats so callers never need to
construct or parse them directly.

Event IDs: {epoch_milliseconds}:{random_hex}
Revisions: {generation}-{md5_of_parent_content_and_salt}

Every document carries its revision history (newest first) so replicas can
tell a descendant edit from an unrelated branch. On the wire the history
uses the `_revisions` form: {"start": generation, "ids": [hash, ...]}.
"""

from __future__ import annotations

import hashlib
import json
import time
import uuid
from collections.abc import Sequence
from typing import Any

# Ancestors kept per document, like CouchDB's default _revs_limit
REVS_LIMIT = 1000


def generate_event_id() -> str:
    """Generate a fresh, collision-resistant event ID."""
    return f"{time.time_ns() // 1_000_000}:{uuid.uuid4().hex}"


def make_revision(previous: str | None, content: dict[str, Any]) -> str:
    """Build a new revision following `previous` for the given content.

    The hash includes a random salt: recreating a document with the same
    content after it was deleted must not reuse a revision other replicas
    already know as an ancestor of the deletion.
    """
    generation = parse_revision(previous)[0] + 1 if previous else 1
    payload = json.dumps(
        {"prev": previous, "content": content, "salt": uuid.uuid4().hex}, sort_keys=True
    )
    digest = hashlib.md5(payload.encode("utf-8")).hexdigest()
    return f"{generation}-{digest}"


def parse_revision(rev: str) -> tuple[int, str]:
    """Split a revision into generation and hash.

    Raises ValueError on malformed input.
    """
    try:
        generation, digest = rev.split("-", 1)
        if not digest:
            raise ValueError
        return int(generation), digest
    except (ValueError, AttributeError):
        raise ValueError(f"Malformed revision: {rev}") from None


def extend_history(rev: str, history: Sequence[str] = ()) -> list[str]:
    """History of a new revision whose parent had `history`."""
    return [rev, *history][:REVS_LIMIT]


def encode_history(history: Sequence[str]) -> dict[str, Any]:
    """`_revisions` block for a history, newest first."""
    start = parse_revision(history[0])[0]
    return {"start": start, "ids": [parse_revision(rev)[1] for rev in history]}


def decode_history(rev: str, revisions: Any) -> list[str]:
    """Full revision ids from a `_revisions` block; just `rev` when absent or malformed."""
    if not isinstance(revisions, dict):
        return [rev]
    start, ids = revisions.get("start"), revisions.get("ids")
    if not isinstance(start, int) or not isinstance(ids, list) or not ids:
        return [rev]
    history = [f"{start - offset}-{digest}" for offset, digest in enumerate(ids)]
    if history[0] != rev:
        return [rev]
    return history[:REVS_LIMIT]


def revision_wins(
    candidate: str,
    current: str | None,
    candidate_deleted: bool = False,
    current_deleted: bool = False,
) -> bool:
    """Deterministic winner between two unrelated revisions of a document.

    A live revision beats a deletion; otherwise the higher generation wins
    and ties go to the lexically higher hash, so every replica picks the
    same winner without coordination.
    """
    if current is None:
        return True
    return (not candidate_deleted, parse_revision(candidate)) > (
        not current_deleted,
        parse_revision(current),
    )


def supersedes(
    candidate: str,
    candidate_history: Sequence[str],
    candidate_deleted: bool,
    current: str | None,
    current_history: Sequence[str] = (),
    current_deleted: bool = False,
) -> bool:
    """Whether a replicated revision should replace the stored one.

    A descendant always replaces its ancestor (this is how edits and
    deletions propagate), an ancestor or an already stored revision never
    does, and unrelated branches are settled by `revision_wins`.
    """
    if current is None:
        return True
    if candidate == current or candidate in current_history:
        return False
    if current in candidate_history:
        return True
    return revision_wins(candidate, current, candidate_deleted, current_deleted)
