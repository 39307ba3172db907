"""
Recovery strategy selection.

Maps an error category plus the current link status to an ordered list of
recovery strategies, and turns a record's strategies into user facing
action labels and a presentation hint.
"""

import logging
from typing import List, Optional

from recovery_engine.models.api_response import Presentation, PresentationMode
from recovery_engine.models.connectivity import ConnectivityState, ConnectivityStatus
from recovery_engine.models.error import ErrorRecord
from recovery_engine.models.taxonomy import (
    ErrorCategory,
    ErrorSeverity,
    RecoveryStrategy,
    strategies_for,
)
from recovery_engine.services.message_catalog import MessageCatalog, get_message_catalog

logger = logging.getLogger(__name__)

# Strategies that need a working link
NETWORK_DEPENDENT = frozenset({RecoveryStrategy.RETRY, RecoveryStrategy.RELOAD})

INLINE_SEVERITIES = frozenset({ErrorSeverity.LOW, ErrorSeverity.MEDIUM})


def is_offline(connectivity: Optional[ConnectivityState]) -> bool:
    return connectivity is not None and connectivity.status == ConnectivityStatus.OFFLINE


def select_strategies(
    category: ErrorCategory,
    connectivity: Optional[ConnectivityState] = None,
) -> List[RecoveryStrategy]:
    """
    Ordered recovery strategies for a category.

    While offline, retry and reload are dropped and offline_mode takes the
    position retry had. The result never holds duplicates. An empty list
    means the user has to resolve the error by hand.

    Args:
        category: Error category
        connectivity: Current link state, if known

    Returns:
        Ordered list of strategies
    """
    candidates = strategies_for(category)

    if not is_offline(connectivity):
        return candidates

    filtered: List[RecoveryStrategy] = []
    for strategy in candidates:
        if strategy == RecoveryStrategy.RETRY:
            strategy = RecoveryStrategy.OFFLINE_MODE
        elif strategy in NETWORK_DEPENDENT:
            continue
        if strategy not in filtered:
            filtered.append(strategy)
    return filtered


class StrategySelector:
    """
    Strategy selection bound to a message catalog.

    Args:
        catalog: Message catalog for action labels and hints
    """

    def __init__(self, catalog: Optional[MessageCatalog] = None):
        self.catalog = catalog or get_message_catalog()

    def select(
        self,
        category: ErrorCategory,
        connectivity: Optional[ConnectivityState] = None,
    ) -> List[RecoveryStrategy]:
        return select_strategies(category, connectivity)

    def recommended_actions(self, record: ErrorRecord) -> List[str]:
        """
        Localized action labels for a record.

        Args:
            record: Classified error

        Returns:
            One label per strategy, followed by the contextual hint for the
            record's user context and platform area when one exists
        """
        actions = [self.catalog.action_label(s) for s in record.recovery_strategy]

        hint = self.catalog.hint_for(record.user_context, record.platform_area)
        if hint:
            actions.append(hint)

        return actions

    def describe_presentation(self, record: ErrorRecord) -> Presentation:
        """
        How the client should surface a record.

        Low and medium severity render inline with at most the top action.
        High and critical take the global slot with every action, and
        critical errors show the escalation entry point up front.
        """
        actions = [self.catalog.action_label(s) for s in record.recovery_strategy]

        if record.severity in INLINE_SEVERITIES:
            return Presentation(mode=PresentationMode.INLINE, actions=actions[:1])

        return Presentation(
            mode=PresentationMode.GLOBAL,
            actions=actions,
            show_escalation=record.severity == ErrorSeverity.CRITICAL,
        )
