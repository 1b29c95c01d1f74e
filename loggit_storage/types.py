"""
Data types shared by the event store, the replicator and the service layer.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

# Id callers pass when saving an event that does not exist yet
NEW_EVENT_ID = "newEvent"

SETTING_KEY_PREFIX = "setting_"


class SettingName(str, Enum):
    """Names accepted by the settings store."""

    SYNC_TOKEN = "syncToken"
    LAST_SYNC_DATE = "lastSyncDate"

    @property
    def storage_key(self) -> str:
        return f"{SETTING_KEY_PREFIX}{self.value}"


@dataclass
class Event:
    """A named, dated occurrence logged by the user.

    Attributes:
        id: Stable identifier, or NEW_EVENT_ID for events not stored yet
        name: Display name, must be non-empty after trimming
        date: Calendar date as YYYY-MM-DD
        rev: Replication revision, only set on documents read from storage
    """

    id: str
    name: str
    date: str
    rev: str | None = None

    @property
    def is_new(self) -> bool:
        return not self.id or self.id == NEW_EVENT_ID

    def to_dict(self, include_rev: bool = False) -> dict[str, Any]:
        """Convert to the export/backup representation."""
        data: dict[str, Any] = {"id": self.id, "name": self.name, "date": self.date}
        if include_rev and self.rev is not None:
            data["rev"] = self.rev
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Event:
        """Create from an export payload entry.

        Accepts both `rev` and the replication wire form `_rev`.
        """
        return cls(
            id=data.get("id") or data.get("_id") or NEW_EVENT_ID,
            name=data.get("name", ""),
            date=data.get("date", ""),
            rev=data.get("rev") or data.get("_rev"),
        )


@dataclass
class Setting:
    """A single key-value setting."""

    name: SettingName
    value: str

    def __post_init__(self) -> None:
        self.name = SettingName(self.name)
