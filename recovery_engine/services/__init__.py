"""Business logic services package."""

from recovery_engine.services.redis_client import (
    RedisClient,
    RedisConnectionError,
    get_redis_client
)
from recovery_engine.services.message_catalog import (
    MessageCatalog,
    get_message_catalog
)
from recovery_engine.services.error_classifier import ErrorClassifier
from recovery_engine.services.strategy_selector import (
    StrategySelector,
    select_strategies
)
from recovery_engine.services.connectivity_monitor import ConnectivityMonitor
from recovery_engine.services.retry_scheduler import RetryScheduler
from recovery_engine.services.health_tracker import HealthTracker
from recovery_engine.services.support_escalation import SupportEscalationGenerator
from recovery_engine.services.recovery_orchestrator import (
    RecoveryOrchestrator,
    RecoveryError,
    NoActiveErrorError,
    NoRecoveryActionError
)

__all__ = [
    'RedisClient',
    'RedisConnectionError',
    'get_redis_client',
    'MessageCatalog',
    'get_message_catalog',
    'ErrorClassifier',
    'StrategySelector',
    'select_strategies',
    'ConnectivityMonitor',
    'RetryScheduler',
    'HealthTracker',
    'SupportEscalationGenerator',
    'RecoveryOrchestrator',
    'RecoveryError',
    'NoActiveErrorError',
    'NoRecoveryActionError'
]
