"""Unit tests for logging infrastructure."""

import json
import logging

from src.utils.logger import JSONFormatter, RichTextFormatter, get_logger


def _record(msg="Test message", level=logging.INFO, name="test_logger", exc_info=None, **extra):
    record = logging.LogRecord(
        name=name,
        level=level,
        pathname="test.py",
        lineno=10,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    """Test JSONFormatter produces valid JSON output."""

    def test_json_formatter_outputs_valid_json(self):
        """Test that JSONFormatter produces valid JSON."""
        parsed = json.loads(JSONFormatter().format(_record()))

        assert parsed["level"] == "INFO"
        assert parsed["logger"] == "test_logger"
        assert parsed["message"] == "Test message"
        assert "timestamp" in parsed

    def test_json_formatter_includes_exception_traceback(self):
        """Test that JSONFormatter includes exception traceback when present."""
        try:
            raise ValueError("Test error")
        except ValueError:
            import sys

            parsed = json.loads(JSONFormatter().format(_record(level=logging.ERROR, exc_info=sys.exc_info())))

        assert "exception" in parsed
        assert "ValueError" in parsed["exception"]

    def test_json_formatter_includes_pipeline_context(self):
        """Test that search_id, attempt and recovery extras are promoted."""
        record = _record(search_id="abc123", attempt=2, recovery="timeout")
        parsed = json.loads(JSONFormatter().format(record))

        assert parsed["search_id"] == "abc123"
        assert parsed["attempt"] == 2
        assert parsed["recovery"] == "timeout"
        assert "source_url" not in parsed


class TestRichTextFormatter:
    """Test RichTextFormatter produces readable output."""

    def test_includes_level_name_logger_and_message(self):
        """Test that level, logger name and message are all present."""
        output = RichTextFormatter().format(_record(msg="Custom message", name="my_logger"))

        assert "INFO" in output
        assert "my_logger" in output
        assert "Custom message" in output

    def test_includes_search_id_prefix(self):
        """Test that a search_id extra is rendered in brackets."""
        output = RichTextFormatter().format(_record(search_id="s-42"))
        assert "[s-42]" in output

    def test_includes_exception_traceback(self):
        """Test that RichTextFormatter includes exception traceback."""
        try:
            raise RuntimeError("Test error")
        except RuntimeError:
            import sys

            output = RichTextFormatter().format(_record(level=logging.ERROR, exc_info=sys.exc_info()))

        assert "RuntimeError" in output
        assert "Test error" in output


class TestGetLogger:
    """Test get_logger function."""

    def test_get_logger_returns_logger_instance(self):
        """Test that get_logger returns a logging.Logger instance."""
        assert isinstance(get_logger("test_module"), logging.Logger)

    def test_get_logger_respects_log_type_json(self, monkeypatch):
        """Test that get_logger uses JSONFormatter with LOG_TYPE=json."""
        test_name = "test_json_logger_ingest"
        logging.getLogger(test_name).handlers.clear()

        monkeypatch.setenv("LOG_TYPE", "json")
        test_logger = get_logger(test_name)

        assert any(isinstance(h.formatter, JSONFormatter) for h in test_logger.handlers)

    def test_invalid_log_level_defaults_to_info(self, monkeypatch):
        """Test that invalid LOG_LEVEL defaults to INFO."""
        test_name = "test_invalid_level_ingest"
        logging.getLogger(test_name).handlers.clear()

        monkeypatch.setenv("LOG_LEVEL", "INVALID")
        assert get_logger(test_name).level == logging.INFO


class TestModuleLevelLogger:
    """Test module-level logger instance."""

    def test_logger_is_importable(self):
        """Test that logger can be imported from logger module."""
        from src.utils.logger import logger as imported_logger

        assert isinstance(imported_logger, logging.Logger)
        assert imported_logger.name == "recipe_ingest"
        assert len(imported_logger.handlers) > 0
