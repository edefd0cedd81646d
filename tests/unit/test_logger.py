"""Unit tests for logging infrastructure."""

import json
import logging
import sys

from kitchenpal.utils.logger import JSONFormatter, RichTextFormatter, get_logger, logger


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
        parsed = json.loads(JSONFormatter().format(_record()))

        assert parsed["level"] == "INFO"
        assert parsed["logger"] == "test_logger"
        assert parsed["message"] == "Test message"
        assert "timestamp" in parsed

    def test_json_formatter_includes_exception_traceback(self):
        try:
            raise ValueError("Test error")
        except ValueError:
            record = _record("Error occurred", level=logging.ERROR, exc_info=sys.exc_info())

        parsed = json.loads(JSONFormatter().format(record))

        assert "ValueError" in parsed["exception"]

    def test_json_formatter_includes_context_fields(self):
        """Test that conversation_id, provider and error_kind extras become top-level keys."""
        record = _record(conversation_id="conv-1", provider="gemini", error_kind="NETWORK_ERROR", latency_ms=42)

        parsed = json.loads(JSONFormatter().format(record))

        assert parsed["conversation_id"] == "conv-1"
        assert parsed["provider"] == "gemini"
        assert parsed["error_kind"] == "NETWORK_ERROR"
        assert parsed["latency_ms"] == 42

    def test_json_formatter_omits_absent_context(self):
        parsed = json.loads(JSONFormatter().format(_record()))

        assert "conversation_id" not in parsed
        assert "strategy" not in parsed


class TestRichTextFormatter:
    """Test RichTextFormatter produces colored text output."""

    def test_rich_text_formatter_includes_level_logger_and_message(self):
        output = RichTextFormatter().format(_record("Custom message", name="my_logger"))

        assert "INFO" in output
        assert "my_logger" in output
        assert "Custom message" in output

    def test_rich_text_formatter_includes_icon_per_level(self):
        formatter = RichTextFormatter()

        for level, icon in RichTextFormatter.ICONS.items():
            output = formatter.format(_record(level=getattr(logging, level)))
            assert icon in output

    def test_rich_text_formatter_appends_context_pairs(self):
        output = RichTextFormatter().format(_record(provider="deepseek", strategy="heuristic"))

        assert "provider=deepseek" in output
        assert "strategy=heuristic" in output

    def test_rich_text_formatter_includes_exception_traceback(self):
        try:
            raise RuntimeError("Test error")
        except RuntimeError:
            record = _record("Error occurred", level=logging.ERROR, exc_info=sys.exc_info())

        output = RichTextFormatter().format(record)

        assert "RuntimeError" in output
        assert "Test error" in output


class TestGetLogger:
    """Test get_logger function."""

    def test_get_logger_returns_same_configured_instance(self):
        first = get_logger("kitchenpal_test_same")
        second = get_logger("kitchenpal_test_same")

        assert first is second
        assert len(first.handlers) == 1

    def test_get_logger_respects_log_level_env(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")

        test_logger = get_logger("kitchenpal_test_debug")

        assert test_logger.level == logging.DEBUG

    def test_get_logger_uses_json_formatter(self, monkeypatch):
        monkeypatch.setenv("LOG_TYPE", "json")

        test_logger = get_logger("kitchenpal_test_json")

        assert isinstance(test_logger.handlers[0].formatter, JSONFormatter)

    def test_get_logger_uses_text_formatter_by_default(self, monkeypatch):
        monkeypatch.delenv("LOG_TYPE", raising=False)

        test_logger = get_logger("kitchenpal_test_text")

        assert isinstance(test_logger.handlers[0].formatter, RichTextFormatter)


class TestModuleLevelLogger:
    """Test module-level logger instance."""

    def test_logger_is_named_after_the_project(self):
        assert isinstance(logger, logging.Logger)
        assert logger.name == "kitchenpal"
        assert logger.handlers

    def test_noisy_sdk_loggers_are_quieted(self):
        assert logging.getLogger("google.genai").level == logging.WARNING
        assert logging.getLogger("httpx").level == logging.WARNING
