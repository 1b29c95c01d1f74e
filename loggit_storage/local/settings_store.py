"""
Persistent key-value settings.

Settings are kept in a flat JSON object beside the event database, not
inside it, so erasing the event store never touches them.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from ..types import SettingName
from .file_ops import read_json, write_json_atomic

logger = logging.getLogger(__name__)


class SettingsStore:
    """Flat, last-write-wins settings namespace.

    Keys on disk carry the `setting_` prefix (`setting_syncToken`,
    `setting_lastSyncDate`). Values are strings; the empty string means unset.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._values: dict[str, str] | None = None
        self._lock = asyncio.Lock()

    async def _load(self) -> dict[str, str]:
        if self._values is None:
            data = await read_json(self.path) or {}
            self._values = {str(k): str(v) for k, v in data.items()}
        return self._values

    async def get(self, name: SettingName | str) -> str:
        """Get a setting value, or "" when unset.

        Raises:
            ValueError: If the name is not a known setting
        """
        key = SettingName(name).storage_key
        async with self._lock:
            values = await self._load()
            return values.get(key, "")

    async def set(self, name: SettingName | str, value: str) -> None:
        """Persist a setting value.

        Raises:
            ValueError: If the name is not a known setting
        """
        setting = SettingName(name)
        async with self._lock:
            values = dict(await self._load())
            values[setting.storage_key] = value
            await write_json_atomic(self.path, values)
            self._values = values
        logger.debug(f"Saved setting {setting.value}")

    def invalidate(self) -> None:
        """Drop the in-memory copy so the next read goes to disk."""
        self._values = None
