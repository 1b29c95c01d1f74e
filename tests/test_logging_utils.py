import json
import logging

from loggit_storage.logging_utils import (
    StorageLoggerAdapter,
    StructuredJsonFormatter,
    configure_structured_logging,
    get_storage_logger,
)


class TestStructuredJsonFormatter:
    def test_formats_extra_fields(self):
        record = logging.LogRecord(
            "loggit_storage.sync", logging.INFO, __file__, 1, "Pushed %d docs", (3,), None
        )
        record.collection = "events"

        data = json.loads(StructuredJsonFormatter().format(record))

        assert data["level"] == "INFO"
        assert data["logger"] == "loggit_storage.sync"
        assert data["message"] == "Pushed 3 docs"
        assert data["collection"] == "events"
        assert "timestamp" in data

    def test_unserializable_extra_is_stringified(self):
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", (), None)
        record.remote = object()

        data = json.loads(StructuredJsonFormatter().format(record))

        assert data["remote"].startswith("<object")


class TestLoggers:
    def test_storage_logger_name(self):
        assert get_storage_logger("cli").name == "loggit_storage.cli"

    def test_configure_replaces_handlers(self):
        logger = configure_structured_logging(logging.DEBUG, "loggit_storage.test")
        configure_structured_logging(logging.DEBUG, "loggit_storage.test")

        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, StructuredJsonFormatter)
        logger.handlers.clear()

    def test_adapter_adds_context(self, caplog):
        adapter = StorageLoggerAdapter(
            logging.getLogger("loggit_storage.test"), {"collection": "events"}
        )

        with caplog.at_level(logging.INFO, logger="loggit_storage.test"):
            adapter.info("hello")

        assert caplog.records[-1].collection == "events"
