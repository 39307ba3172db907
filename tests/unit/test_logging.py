"""
Unit tests for structured logging utilities.
"""

import json
import logging
from io import StringIO

import pytest

from recovery_engine.models.error import AmbientContext
from recovery_engine.models.taxonomy import ErrorCategory, PlatformArea, UserContext
from recovery_engine.services.error_classifier import ErrorClassifier
from recovery_engine.services.message_catalog import MessageCatalog
from recovery_engine.utils.logging import (
    get_logger,
    JSONFormatter,
    level_for_severity,
    log_error_record,
    log_retry_transition,
    log_connectivity_change,
    log_escalation,
)


def capture(logger, level=logging.DEBUG):
    """Attach a JSON handler to the adapter's logger and return its buffer."""
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(JSONFormatter())
    logger.logger.addHandler(handler)
    logger.logger.setLevel(level)
    return stream


def read_lines(stream):
    return [json.loads(line) for line in stream.getvalue().splitlines()]


def test_json_formatter():
    """Test JSON formatter produces valid JSON output."""
    formatter = JSONFormatter()

    logger = logging.getLogger("test_formatter")
    logger.setLevel(logging.INFO)

    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    logger.info("Test message", extra={"error_id": "err_123", "operation_key": "upload", "attempt": 2})

    log_data = json.loads(stream.getvalue())

    assert "timestamp" in log_data
    assert log_data["level"] == "INFO"
    assert log_data["logger"] == "test_formatter"
    assert log_data["message"] == "Test message"
    assert log_data["error_id"] == "err_123"
    assert log_data["operation_key"] == "upload"
    assert log_data["context"]["attempt"] == 2
    assert "source" in log_data


def test_json_formatter_includes_exception():
    """Test exception details are serialized."""
    logger = get_logger("test_exception")
    stream = capture(logger)

    try:
        raise ValueError("boom")
    except ValueError:
        logger.error("Failed", exc_info=True)

    log_data = read_lines(stream)[-1]
    assert log_data["error"]["type"] == "ValueError"
    assert log_data["error"]["message"] == "boom"
    assert "Traceback" in log_data["error"]["stack_trace"]


def test_get_logger_with_context():
    """Test getting logger with context."""
    logger = get_logger("test_module", error_id="err_123", operation_key="upload")

    assert logger.extra["error_id"] == "err_123"
    assert logger.extra["operation_key"] == "upload"


def test_with_context_merges_without_mutating():
    """Test derived adapters keep the parent context intact."""
    parent = get_logger("test_merge", error_id="err_1")
    child = parent.with_context(operation_key="chat")

    assert child.extra == {"error_id": "err_1", "operation_key": "chat"}
    assert parent.extra == {"error_id": "err_1"}


def test_context_is_injected_into_records():
    """Test adapter context reaches every line."""
    logger = get_logger("test_injected", operation_key="portfolio_upload")
    stream = capture(logger)

    logger.info("Scheduling retry")

    assert read_lines(stream)[-1]["operation_key"] == "portfolio_upload"


@pytest.mark.parametrize("severity,level", [
    ("critical", logging.CRITICAL),
    ("high", logging.ERROR),
    ("medium", logging.WARNING),
    ("low", logging.INFO),
    ("bogus", logging.INFO),
])
def test_level_for_severity(severity, level):
    """Test severity to level mapping."""
    assert level_for_severity(severity) == level


def test_log_error_record():
    """Test classified errors are logged at their severity level."""
    logger = get_logger("test_error_record")
    stream = capture(logger)
    record = ErrorClassifier(MessageCatalog.load()).classify(
        "Payment failed",
        AmbientContext(category=ErrorCategory.PAYMENT, user_context=UserContext.EXPLORADOR,
                       platform_area=PlatformArea.PAYMENTS),
    )

    log_error_record(logger, record)

    log_data = read_lines(stream)[-1]
    assert log_data["level"] == "CRITICAL"
    assert log_data["error_id"] == record.id
    assert log_data["category"] == "payment"
    assert log_data["platform_area"] == "payments"
    assert log_data["user_context"] == "explorador"
    assert log_data["context"]["severity"] == "critical"


def test_log_retry_transition():
    """Test retry transitions log the delay."""
    logger = get_logger("test_retry")
    stream = capture(logger)

    log_retry_transition(logger, "upload", "idle", "scheduled", 0, delay=1.23456)

    log_data = read_lines(stream)[-1]
    assert log_data["level"] == "INFO"
    assert log_data["operation_key"] == "upload"
    assert log_data["context"]["to_state"] == "scheduled"
    assert log_data["context"]["delay_seconds"] == 1.235


def test_log_retry_exhausted_is_warning():
    """Test exhaustion is logged as a warning."""
    logger = get_logger("test_retry_exhausted")
    stream = capture(logger)

    log_retry_transition(logger, "upload", "retrying", "exhausted", 3)

    log_data = read_lines(stream)[-1]
    assert log_data["level"] == "WARNING"
    assert "delay_seconds" not in log_data["context"]


@pytest.mark.parametrize("current,level", [("offline", "WARNING"), ("slow", "INFO")])
def test_log_connectivity_change(current, level):
    """Test connectivity changes log offline as a warning."""
    logger = get_logger(f"test_connectivity_{current}")
    stream = capture(logger)

    log_connectivity_change(logger, "online", current, rtt_ms=1500)

    log_data = read_lines(stream)[-1]
    assert log_data["level"] == level
    assert log_data["context"]["status"] == current
    assert log_data["context"]["rtt_ms"] == 1500


def test_log_escalation():
    """Test escalation logging."""
    logger = get_logger("test_escalation")
    stream = capture(logger)

    log_escalation(logger, "err_1", "user_frustrated", "phone", "TKT-ABCDEFGH", frustration_score=85.0)

    log_data = read_lines(stream)[-1]
    assert log_data["level"] == "WARNING"
    assert log_data["error_id"] == "err_1"
    assert log_data["context"]["ticket_id"] == "TKT-ABCDEFGH"
    assert log_data["context"]["frustration_score"] == 85.0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
