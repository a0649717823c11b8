"""Unit tests for structured logging."""

import json
import logging

from rss_aggregator.logging_config import (
    ExecutionLogger,
    StructuredFormatter,
    create_execution_logger,
)


class CaptureHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


def capture(component):
    handler = CaptureHandler()
    logger = logging.getLogger(f"rss_aggregator.{component}")
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    return handler, logger


class TestStructuredLoggingUnit:
    """Unit tests for StructuredFormatter and ExecutionLogger."""

    def test_formatter_emits_context_fields(self):
        record = logging.LogRecord(
            "rss_aggregator.aggregator", logging.ERROR, __file__, 10, "Feed failed", None, None
        )
        record.execution_id = "exec_1"
        record.component = "aggregator"
        record.feed_url = "https://a.example/rss"
        record.error_kind = "network"
        record.unrelated = "dropped"

        entry = json.loads(StructuredFormatter().format(record))

        assert entry["level"] == "ERROR"
        assert entry["message"] == "Feed failed"
        assert entry["logger"] == "rss_aggregator.aggregator"
        assert entry["execution_id"] == "exec_1"
        assert entry["feed_url"] == "https://a.example/rss"
        assert entry["error_kind"] == "network"
        assert "unrelated" not in entry
        assert "timestamp" in entry

    def test_formatter_serializes_non_json_values(self):
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "metrics", None, None)
        record.metrics = {"duration": object()}

        entry = json.loads(StructuredFormatter().format(record))

        assert isinstance(entry["metrics"]["duration"], str)

    def test_execution_logger_attaches_context(self):
        handler, logger = capture("unit_test")
        try:
            ExecutionLogger("exec_42", "unit_test").warning("careful", feed_url="https://a")
        finally:
            logger.removeHandler(handler)

        record = handler.records[0]
        assert record.levelno == logging.WARNING
        assert record.execution_id == "exec_42"
        assert record.component == "unit_test"
        assert record.feed_url == "https://a"

    def test_batch_logging_reports_metrics(self):
        handler, logger = capture("batch_test")
        try:
            execution_logger = ExecutionLogger("exec_7", "batch_test")
            execution_logger.log_batch_start(3, True)
            execution_logger.log_batch_end(2, 1, 14)
        finally:
            logger.removeHandler(handler)

        start, end = handler.records
        assert start.feed_count == 3
        assert start.force_refresh is True
        assert end.metrics["feeds_refreshed"] == 2
        assert end.metrics["feeds_failed"] == 1
        assert end.metrics["articles_merged"] == 14
        assert end.metrics["duration_seconds"] >= 0

    def test_generated_execution_id(self):
        execution_logger = create_execution_logger("fetcher")

        assert execution_logger.execution_id.startswith("exec_")
        assert execution_logger.logger.name == "rss_aggregator.fetcher"
