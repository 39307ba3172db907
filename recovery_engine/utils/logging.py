"""
Structured logging utilities with JSON formatting and context injection.

This module provides structured logging capabilities with:
- JSON formatted log output for machine-readable logs
- Context injection (error_id, category, operation_key) via LoggerAdapter
- Severity-aware levels for classified error records
- Integration with Python's standard logging module
"""

import logging
import json
import sys
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional, MutableMapping, TYPE_CHECKING
from logging import LogRecord

if TYPE_CHECKING:
    from recovery_engine.models.error import ErrorRecord


# Context fields promoted to the top level of every JSON log line
CONTEXT_FIELDS = (
    "error_id",
    "category",
    "platform_area",
    "user_context",
    "operation_key",
    "request_id",
)

_RESERVED_ATTRS = {
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "message", "pathname", "process", "processName", "relativeCreated",
    "thread", "threadName", "exc_info", "exc_text", "stack_info", "taskName",
}

_LEVEL_BY_SEVERITY = {
    "critical": logging.CRITICAL,
    "high": logging.ERROR,
    "medium": logging.WARNING,
    "low": logging.INFO,
}


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs log records as JSON with standard fields:
    - timestamp: ISO 8601 formatted timestamp
    - level: Log level (INFO, WARNING, ERROR, etc.)
    - logger: Logger name
    - message: Log message
    - error_id, category, platform_area, user_context, operation_key, request_id
    - context: Any other extra fields
    - error: Exception details when exc_info is set
    """

    def format(self, record: LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field in CONTEXT_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        extra_fields = {}
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and key not in CONTEXT_FIELDS:
                extra_fields[key] = value

        if extra_fields:
            log_data["context"] = extra_fields

        if record.exc_info:
            log_data["error"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "stack_trace": "".join(traceback.format_exception(*record.exc_info))
            }

        log_data["source"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName
        }

        return json.dumps(log_data, default=str)


class ContextLoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that injects context fields into all log records.
    """

    def __init__(self, logger: logging.Logger, extra: Optional[Dict[str, Any]] = None):
        super().__init__(logger, extra or {})

    def process(self, msg: str, kwargs: MutableMapping[str, Any]) -> tuple[str, MutableMapping[str, Any]]:
        extra = kwargs.get("extra", {})
        extra.update(self.extra)
        kwargs["extra"] = extra
        return msg, kwargs

    def with_context(self, **context: Any) -> "ContextLoggerAdapter":
        """
        Create a new logger adapter with additional context.

        Args:
            **context: Additional context fields

        Returns:
            New logger adapter with merged context
        """
        new_extra = self.extra.copy()
        new_extra.update(context)
        return ContextLoggerAdapter(self.logger, new_extra)


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    formatter = JSONFormatter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("redis").setLevel(logging.WARNING)


def get_logger(name: str, **context: Any) -> ContextLoggerAdapter:
    """
    Get a context-aware logger for a module.

    Args:
        name: Logger name (typically __name__)
        **context: Initial context fields (error_id, operation_key, etc.)

    Returns:
        Context logger adapter

    Example:
        logger = get_logger(__name__, operation_key="portfolio_upload")
        logger.info("Scheduling retry")
    """
    base_logger = logging.getLogger(name)
    return ContextLoggerAdapter(base_logger, context)


def level_for_severity(severity: str) -> int:
    """Map an error severity value to a logging level."""
    return _LEVEL_BY_SEVERITY.get(severity, logging.INFO)


def log_error_record(logger: logging.LoggerAdapter, record: "ErrorRecord") -> None:
    """
    Log a classified error at the level matching its severity.

    Args:
        logger: Logger to use
        record: Classified error record
    """
    logger.log(
        level_for_severity(record.severity.value),
        f"Error reported: {record.category.value} ({record.code})",
        extra={
            "error_id": record.id,
            "category": record.category.value,
            "platform_area": record.platform_area.value,
            "user_context": record.user_context.value,
            "operation_key": record.operation_key,
            "severity": record.severity.value,
            "http_status": record.http_status,
            "technical_details": record.technical_details,
        }
    )


def log_retry_transition(
    logger: logging.LoggerAdapter,
    operation_key: str,
    from_state: str,
    to_state: str,
    retry_count: int,
    delay: Optional[float] = None
) -> None:
    """
    Log a retry scheduler state transition.

    Args:
        logger: Logger to use
        operation_key: Logical operation being retried
        from_state: Previous scheduler state
        to_state: New scheduler state
        retry_count: Attempts counted so far
        delay: Backoff delay in seconds when entering scheduled
    """
    extra = {
        "operation_key": operation_key,
        "from_state": from_state,
        "to_state": to_state,
        "retry_count": retry_count,
    }
    if delay is not None:
        extra["delay_seconds"] = round(delay, 3)

    if to_state == "exhausted":
        logger.warning(f"Retries exhausted for {operation_key}", extra=extra)
    else:
        logger.info(f"Retry state {from_state} -> {to_state}", extra=extra)


def log_connectivity_change(
    logger: logging.LoggerAdapter,
    previous: str,
    current: str,
    rtt_ms: Optional[float] = None,
    downlink_mbps: Optional[float] = None
) -> None:
    """
    Log a published connectivity status change.

    Args:
        logger: Logger to use
        previous: Previously published status
        current: Newly published status
        rtt_ms: Round trip time if known
        downlink_mbps: Downlink estimate if known
    """
    extra: Dict[str, Any] = {"previous_status": previous, "status": current}
    if rtt_ms is not None:
        extra["rtt_ms"] = rtt_ms
    if downlink_mbps is not None:
        extra["downlink_mbps"] = downlink_mbps

    if current == "offline":
        logger.warning(f"Connectivity changed: {previous} -> {current}", extra=extra)
    else:
        logger.info(f"Connectivity changed: {previous} -> {current}", extra=extra)


def log_escalation(
    logger: logging.LoggerAdapter,
    error_id: str,
    trigger: str,
    channel: str,
    ticket_id: str,
    frustration_score: Optional[float] = None
) -> None:
    """
    Log a support escalation.

    Args:
        logger: Logger to use
        error_id: Escalated error id
        trigger: What caused the escalation
        channel: Selected support channel
        ticket_id: Generated ticket id
        frustration_score: Frustration score at escalation time
    """
    logger.warning(
        f"Escalated error {error_id} to support via {channel}",
        extra={
            "error_id": error_id,
            "trigger": trigger,
            "channel": channel,
            "ticket_id": ticket_id,
            "frustration_score": frustration_score,
        }
    )
