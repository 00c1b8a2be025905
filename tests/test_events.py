"""Tests for audit events and log rendering."""

import json
import logging

import pytest

from albcontroller.events import EventReason, EventType, LoggingEventRecorder, emit
from albcontroller.log import JsonFormatter, prettify
from albcontroller.models import RuleCondition
from elbv2_mock import EventLog


class TestEmit:
    """Tests for emit."""

    def test_formats_message(self) -> None:
        events = EventLog()

        emit(events, EventType.NORMAL, EventReason.CREATE, "%s rule created", "5")

        assert events.events == [("Normal", "CREATE", "5 rule created")]

    def test_no_recorder(self) -> None:
        """Test that a missing recorder is a no-op."""
        emit(None, EventType.WARNING, EventReason.ERROR, "ignored")

    def test_recorder_failure_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test that a raising recorder never reaches the caller."""

        def broken(event_type: str, reason: str, message: str) -> None:
            raise RuntimeError("sink down")

        with caplog.at_level(logging.ERROR, logger="albcontroller.events"):
            emit(broken, EventType.WARNING, EventReason.ERROR, "Error creating %s", "web")

        assert "Event recorder failed" in caplog.text

    def test_message_without_args_is_not_formatted(self) -> None:
        """Test that literal percent signs survive when no args are given."""
        events = EventLog()

        emit(events, EventType.NORMAL, EventReason.MODIFY, "100% modified")

        assert events.events[0][2] == "100% modified"


class TestLoggingEventRecorder:
    """Tests for LoggingEventRecorder."""

    def test_warning_level(self, caplog: pytest.LogCaptureFixture) -> None:
        recorder = LoggingEventRecorder("listener/arn:1")

        with caplog.at_level(logging.INFO, logger="albcontroller.events.audit"):
            recorder("Warning", "ERROR", "Error deleting 5 rule")

        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert record.subject == "listener/arn:1"
        assert record.reason == "ERROR"


class TestLogRendering:
    """Tests for JSON logging and prettify."""

    def test_prettify_conditions(self) -> None:
        """Test that conditions render with API member names."""
        text = prettify([RuleCondition(field="path-pattern", values=["/a"])])

        assert text == '[{"Field": "path-pattern", "Values": ["/a"]}]'

    def test_prettify_plain_value(self) -> None:
        assert prettify("default") == '"default"'

    def test_json_formatter_includes_extra(self) -> None:
        """Test that extra fields become top-level JSON keys."""
        record = logging.LogRecord(
            "albcontroller.rule", logging.INFO, __file__, 1, "Completed %s", ("x",), None
        )
        record.priority = "5"

        data = json.loads(JsonFormatter().format(record))

        assert data["message"] == "Completed x"
        assert data["level"] == "INFO"
        assert data["priority"] == "5"
        assert data["timestamp"].endswith("Z")
