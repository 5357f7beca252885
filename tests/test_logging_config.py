"""
Tests for logging configuration
"""
import json
import logging
import sys

from config.logging_config import JsonFormatter, setup_logging


class TestJsonFormatter:
    """Test cases for JsonFormatter"""

    def test_format_includes_extra_fields(self):
        record = logging.LogRecord(
            "src.mention_resolution.core.orchestrator", logging.INFO, __file__, 1,
            "Processed %s", ("a1",), None,
        )
        record.article_id = "a1"

        data = json.loads(JsonFormatter().format(record))

        assert data["level"] == "INFO"
        assert data["message"] == "Processed a1"
        assert data["article_id"] == "a1"
        assert "timestamp" in data

    def test_format_exception(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = logging.LogRecord("test", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())

        data = json.loads(JsonFormatter().format(record))
        assert "ValueError: boom" in data["exception"]


def test_setup_logging_replaces_handlers():
    root = logging.getLogger()
    previous_handlers = list(root.handlers)
    previous_level = root.level
    try:
        setup_logging("DEBUG", "json")
        setup_logging("DEBUG", "json")

        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JsonFormatter)
    finally:
        for handler in list(root.handlers):
            root.removeHandler(handler)
        for handler in previous_handlers:
            root.addHandler(handler)
        root.setLevel(previous_level)
