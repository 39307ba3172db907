"""
Resilience utilities for error recovery.

This module provides:
- BackoffPolicy for exponential backoff with multiplicative jitter
- Factory functions for the network and generic retry policies
- Safe persistence helper that logs instead of propagating store failures
"""

import logging
import random
from dataclasses import dataclass
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Exponential backoff with jitter.

    The delay before attempt ``n`` (0-based) is::

        min(base_delay * 2 ** n, max_delay) * (1 + jitter_fraction * r)

    where ``r`` is drawn uniformly from [0, 1).

    Args:
        base_delay: Delay in seconds before the first retry
        max_delay: Cap on the exponential part in seconds
        jitter_fraction: Maximum extra fraction added on top of the capped delay
        exponential_base: Growth factor between attempts
    """

    base_delay: float = 1.0
    max_delay: float = 10.0
    jitter_fraction: float = 0.3
    exponential_base: float = 2.0

    def base_for(self, attempt: int) -> float:
        """Capped delay for an attempt, without jitter."""
        if attempt < 0:
            attempt = 0
        # Avoid overflow for very large attempt numbers
        if attempt > 64:
            return self.max_delay
        return min(self.base_delay * (self.exponential_base ** attempt), self.max_delay)

    def compute_delay(self, attempt: int, r: Optional[float] = None) -> float:
        """
        Compute the jittered delay for an attempt.

        Args:
            attempt: Attempt number (0-based, usually the current retry count)
            r: Jitter sample in [0, 1). Drawn from ``random.random`` when omitted.

        Returns:
            Delay in seconds
        """
        if r is None:
            r = random.random()
        r = min(max(r, 0.0), 1.0)
        return self.base_for(attempt) * (1 + self.jitter_fraction * r)

    @property
    def upper_bound(self) -> float:
        """Largest delay this policy can produce."""
        return self.max_delay * (1 + self.jitter_fraction)


def create_network_backoff_policy(settings: Any = None) -> BackoffPolicy:
    """Create backoff policy for network failures (capped at 30s)."""
    if settings is None:
        from recovery_engine.config import settings
    return BackoffPolicy(
        base_delay=settings.retry_base_delay,
        max_delay=settings.retry_max_delay_network,
        jitter_fraction=settings.retry_jitter_fraction,
    )


def create_generic_backoff_policy(settings: Any = None) -> BackoffPolicy:
    """Create backoff policy for every other recoverable failure (capped at 10s)."""
    if settings is None:
        from recovery_engine.config import settings
    return BackoffPolicy(
        base_delay=settings.retry_base_delay,
        max_delay=settings.retry_max_delay,
        jitter_fraction=settings.retry_jitter_fraction,
    )


async def persist_safely(
    operation: Callable[..., Any],
    *args: Any,
    context: Optional[dict] = None,
) -> bool:
    """
    Run a persistence coroutine, logging failures instead of raising them.

    Args:
        operation: Async callable performing the write
        *args: Arguments for the operation
        context: Context information for logging

    Returns:
        True if successful, False otherwise
    """
    try:
        await operation(*args)
        logger.debug(f"State persisted successfully: {context}")
        return True

    except Exception as e:
        logger.error(
            f"Failed to persist state: {e}",
            extra={
                "persist_context": context or {},
                "error_type": type(e).__name__,
                "error_message": str(e)
            },
            exc_info=True
        )
        return False
