"""
Metrics emission for recovery observability.

This module provides metrics tracking for:
- Errors reported per category and severity
- Recovery attempt latency and outcome
- Escalations and frustration score
"""

import asyncio
import time
from typing import Any, Optional, Dict
from contextlib import asynccontextmanager

from recovery_engine.utils.logging import get_logger

logger = get_logger(__name__)


class RecoveryMetrics:
    """
    In-process counters for one orchestrator instance.

    Latency is kept as running totals.

    Tracks:
    - Reported errors by category
    - Recovery attempts, successes and failures
    - Escalations by trigger
    """

    def __init__(self):
        self.errors_by_category: Dict[str, int] = {}
        self.escalations_by_trigger: Dict[str, int] = {}
        self.attempts: int = 0
        self.successes: int = 0
        self.failures: int = 0
        self.latency_count: int = 0
        self.latency_total_ms: float = 0.0
        self.latency_min_ms: Optional[float] = None
        self.latency_max_ms: Optional[float] = None

    def record_error(self, category: str) -> None:
        self.errors_by_category[category] = self.errors_by_category.get(category, 0) + 1

    def record_escalation(self, trigger: str) -> None:
        self.escalations_by_trigger[trigger] = self.escalations_by_trigger.get(trigger, 0) + 1

    def record_attempt(self, duration_ms: float, succeeded: bool) -> None:
        """
        Record a recovery attempt and its latency.

        Args:
            duration_ms: Attempt duration in milliseconds
            succeeded: Whether the action completed without raising
        """
        self.attempts += 1
        if succeeded:
            self.successes += 1
        else:
            self.failures += 1
        self.latency_count += 1
        self.latency_total_ms += duration_ms
        if self.latency_min_ms is None or duration_ms < self.latency_min_ms:
            self.latency_min_ms = duration_ms
        if self.latency_max_ms is None or duration_ms > self.latency_max_ms:
            self.latency_max_ms = duration_ms

    def get_metrics_summary(self) -> Dict[str, Any]:
        summary: Dict[str, Any] = {
            "errors_by_category": dict(self.errors_by_category),
            "escalations_by_trigger": dict(self.escalations_by_trigger),
            "attempts": self.attempts,
            "successes": self.successes,
            "failures": self.failures,
        }

        if self.latency_count:
            summary["attempt_latency"] = {
                "count": self.latency_count,
                "min_ms": round(self.latency_min_ms, 2),
                "max_ms": round(self.latency_max_ms, 2),
                "avg_ms": round(self.latency_total_ms / self.latency_count, 2),
            }

        return summary


@asynccontextmanager
async def track_recovery_attempt(
    metrics: Optional[RecoveryMetrics],
    operation_key: str,
    attempt: int,
    logger_adapter
):
    """
    Context manager to time a recovery action.

    Usage:
        async with track_recovery_attempt(metrics, "upload", 1, logger):
            await action()

    Args:
        metrics: Metrics collector (optional)
        operation_key: Logical operation being recovered
        attempt: Attempt number (1-based)
        logger_adapter: Logger for the attempt outcome

    Yields:
        None
    """
    start_time = time.perf_counter()
    extra: Dict[str, Any] = {"operation_key": operation_key, "attempt": attempt}

    try:
        yield
    except asyncio.CancelledError:
        # Aborted attempts are not counted
        logger_adapter.info(f"Recovery attempt {attempt} aborted for {operation_key}", extra=extra)
        raise
    except Exception as e:
        duration_ms = (time.perf_counter() - start_time) * 1000
        if metrics:
            metrics.record_attempt(duration_ms, succeeded=False)
        extra.update({"duration_ms": round(duration_ms, 2), "error": str(e)})
        logger_adapter.warning(f"Recovery attempt {attempt} failed for {operation_key}", extra=extra)
        raise

    duration_ms = (time.perf_counter() - start_time) * 1000
    if metrics:
        metrics.record_attempt(duration_ms, succeeded=True)
    extra["duration_ms"] = round(duration_ms, 2)
    logger_adapter.info(f"Recovery attempt {attempt} for {operation_key}", extra=extra)


def emit_metric(metric_name: str, value: float, **tags: Any) -> None:
    """
    Emit a metric.

    Metrics are logged; a monitoring backend can pick them up from the
    structured log stream.

    Args:
        metric_name: Metric name
        value: Metric value
        **tags: Metric tags/labels
    """
    logger.info(
        f"Metric: {metric_name}",
        extra={
            "metric_name": metric_name,
            "metric_value": value,
            "metric_tags": tags,
        }
    )
