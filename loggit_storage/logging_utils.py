"""
Logging helpers for the event store.

Modules log through plain `logging` under the ``loggit_storage`` namespace.
The CLI can switch that namespace to one-JSON-object-per-line output, and
replication sessions tag their records with the collection and the redacted
remote so concurrent sessions can be told apart.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

ROOT_LOGGER = "loggit_storage"

# Whatever a bare record carries is not context
_RECORD_FIELDS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "taskName"}


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


class StructuredJsonFormatter(logging.Formatter):
    """Render a record as a single JSON line.

    Always present: ``timestamp`` (UTC, ISO 8601), ``level``, ``logger`` and
    ``message``. Fields passed through ``extra`` are copied alongside them;
    values json cannot encode are stored as their ``str()``.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(self.context_of(record))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)

    @staticmethod
    def context_of(record: logging.LogRecord) -> dict[str, Any]:
        return {
            key: _jsonable(value)
            for key, value in vars(record).items()
            if key not in _RECORD_FIELDS and not key.startswith("_")
        }


def configure_structured_logging(
    level: int = logging.INFO,
    logger_name: str | None = None,
) -> logging.Logger:
    """Send ``logger_name`` (root if None) to stderr as JSON lines.

    Calling this again replaces the previous handler instead of stacking a
    second one, so repeated CLI invocations in one process log once.
    """
    logger = logging.getLogger(logger_name)
    for existing in list(logger.handlers):
        logger.removeHandler(existing)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(StructuredJsonFormatter())
    logger.addHandler(handler)
    logger.setLevel(level)
    return logger


def get_storage_logger(name: str) -> logging.Logger:
    """Logger for one component, e.g. ``get_storage_logger("cli")``."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


class StorageLoggerAdapter(logging.LoggerAdapter):
    """Merges fixed context into the ``extra`` of every call.

    Keys given explicitly on a call win over the adapter's own.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs
