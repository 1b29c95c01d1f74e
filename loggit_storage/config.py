"""
Storage configuration.

Values come from code, environment variables, or a YAML file:

```yaml
storage:
  data_dir: ~/.loggit
  database_name: localdb_loggit_v0
  import_chunk_size: 200
  import_chunk_delay: 1.0
replication:
  batch_size: 100
  poll_interval: 10.0
  request_timeout: 30.0
  retry:
    max_retries: null   # retry forever
    backoff_base: 1.0
    backoff_max: 60.0
```
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .exceptions import StorageIOError
from .sync.retry import RetryConfig

DEFAULT_DATA_DIR = Path.home() / ".loggit"
DEFAULT_DATABASE_NAME = "localdb_loggit_v0"
DEFAULT_COLLECTION_NAME = "events"

# Remote endpoints rate-limit bulk writes, so large imports are throttled
DEFAULT_IMPORT_CHUNK_SIZE = 200
DEFAULT_IMPORT_CHUNK_DELAY = 1.0  # seconds


@dataclass
class ReplicationConfig:
    """Configuration for live replication sessions."""

    batch_size: int = 100
    poll_interval: float = 10.0  # seconds between idle cycles
    request_timeout: float = 30.0
    retry: RetryConfig = field(default_factory=RetryConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReplicationConfig:
        retry_data = data.get("retry") or {}
        return cls(
            batch_size=int(data.get("batch_size", 100)),
            poll_interval=float(data.get("poll_interval", 10.0)),
            request_timeout=float(data.get("request_timeout", 30.0)),
            retry=RetryConfig(
                max_retries=retry_data.get("max_retries"),
                backoff_base=float(retry_data.get("backoff_base", 1.0)),
                backoff_max=float(retry_data.get("backoff_max", 60.0)),
                backoff_multiplier=float(retry_data.get("backoff_multiplier", 2.0)),
            ),
        )


@dataclass
class StorageConfig:
    """Configuration for the local event store and the facade.

    Attributes:
        data_dir: Directory holding the database and settings files
        database_name: File stem of the SQLite database
        collection_name: Name of the event collection
        import_chunk_size: Largest number of events inserted in one call
        import_chunk_delay: Pause between import chunks (seconds)
        replication: Replication session settings
    """

    data_dir: Path = DEFAULT_DATA_DIR
    database_name: str = DEFAULT_DATABASE_NAME
    collection_name: str = DEFAULT_COLLECTION_NAME
    import_chunk_size: int = DEFAULT_IMPORT_CHUNK_SIZE
    import_chunk_delay: float = DEFAULT_IMPORT_CHUNK_DELAY
    replication: ReplicationConfig = field(default_factory=ReplicationConfig)

    def __post_init__(self) -> None:
        self.data_dir = Path(self.data_dir).expanduser()
        if self.import_chunk_size <= 0:
            raise ValueError(f"import_chunk_size must be positive, got {self.import_chunk_size}")

    @property
    def db_path(self) -> Path:
        return self.data_dir / f"{self.database_name}.sqlite3"

    @property
    def settings_path(self) -> Path:
        return self.data_dir / "settings.json"

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Create config from environment variables."""
        config = cls(
            data_dir=Path(os.environ.get("LOGGIT_DATA_DIR", str(DEFAULT_DATA_DIR))),
            import_chunk_size=int(
                os.environ.get("LOGGIT_IMPORT_CHUNK_SIZE", DEFAULT_IMPORT_CHUNK_SIZE)
            ),
            import_chunk_delay=float(
                os.environ.get("LOGGIT_IMPORT_CHUNK_DELAY", DEFAULT_IMPORT_CHUNK_DELAY)
            ),
        )

        poll_interval = os.environ.get("LOGGIT_SYNC_POLL_INTERVAL")
        if poll_interval:
            config.replication.poll_interval = float(poll_interval)

        max_retries = os.environ.get("LOGGIT_SYNC_MAX_RETRIES")
        if max_retries:
            config.replication.retry.max_retries = int(max_retries)

        return config

    @classmethod
    def from_file(cls, path: Path) -> StorageConfig:
        """Create config from a YAML file.

        Raises:
            StorageIOError: If the file cannot be read or parsed
        """
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise StorageIOError("read_config", str(path), e) from e

        storage = data.get("storage") or {}
        return cls(
            data_dir=Path(storage.get("data_dir", str(DEFAULT_DATA_DIR))),
            database_name=storage.get("database_name", DEFAULT_DATABASE_NAME),
            collection_name=storage.get("collection_name", DEFAULT_COLLECTION_NAME),
            import_chunk_size=int(storage.get("import_chunk_size", DEFAULT_IMPORT_CHUNK_SIZE)),
            import_chunk_delay=float(
                storage.get("import_chunk_delay", DEFAULT_IMPORT_CHUNK_DELAY)
            ),
            replication=ReplicationConfig.from_dict(data.get("replication") or {}),
        )
