"""
Utility modules for the error recovery engine.
"""

from recovery_engine.utils.logging import (
    get_logger,
    setup_logging,
    log_error_record,
    log_retry_transition,
    log_connectivity_change,
    log_escalation,
)
from recovery_engine.utils.metrics import (
    RecoveryMetrics,
    track_recovery_attempt,
    emit_metric,
)
from recovery_engine.utils.resilience import (
    BackoffPolicy,
    create_network_backoff_policy,
    create_generic_backoff_policy,
    persist_safely,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "log_error_record",
    "log_retry_transition",
    "log_connectivity_change",
    "log_escalation",
    "RecoveryMetrics",
    "track_recovery_attempt",
    "emit_metric",
    "BackoffPolicy",
    "create_network_backoff_policy",
    "create_generic_backoff_policy",
    "persist_safely",
]
