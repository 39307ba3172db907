"""
Retry scheduling for one logical operation.

The scheduler drives an automatic recovery loop::

    idle -> scheduled -> retrying -> succeeded
                ^            |
                +------------+  (failure, attempts left)
                             |
                             +-> exhausted  (failure, no attempts left)

    scheduled/retrying -> suspended -> scheduled   (offline, then online)
    any -> idle                                    (cancel)

Only the backoff delay is timed. The recovery action runs until it returns
or raises.
"""

import asyncio
import inspect
import random
from typing import Any, Awaitable, Callable, List, Optional

from recovery_engine.models.api_response import RetryState
from recovery_engine.models.error import ErrorRecord
from recovery_engine.utils.logging import get_logger, log_retry_transition
from recovery_engine.utils.metrics import RecoveryMetrics, track_recovery_attempt
from recovery_engine.utils.resilience import BackoffPolicy

logger = get_logger(__name__)

RecoveryAction = Callable[[], Awaitable[Any]]
SchedulerCallback = Callable[["RetryScheduler"], Any]
StateListener = Callable[["RetryScheduler", RetryState, RetryState], None]

LIVE_STATES = frozenset({RetryState.SCHEDULED, RetryState.RETRYING, RetryState.SUSPENDED})


class RetryScheduler:
    """
    Automatic retry loop with exponential backoff.

    Args:
        record: Error record that started the operation
        action: Async recovery action; raising means the attempt failed
        policy: Backoff policy
        on_success: Called once the action succeeds
        on_exhausted: Called once the retry budget is spent
        rng: Jitter source returning floats in [0, 1)
        sleep: Awaitable sleep, injectable for tests
        metrics: Optional metrics collector
    """

    def __init__(
        self,
        record: ErrorRecord,
        action: RecoveryAction,
        policy: BackoffPolicy,
        on_success: Optional[SchedulerCallback] = None,
        on_exhausted: Optional[SchedulerCallback] = None,
        rng: Callable[[], float] = random.random,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        metrics: Optional[RecoveryMetrics] = None,
    ):
        self.records: List[ErrorRecord] = [record]
        self.operation_key = record.operation_key
        self.action = action
        self.policy = policy
        self.max_retries = record.max_retries
        self.retry_count = record.retry_count
        self.next_delay: Optional[float] = None

        self._on_success = on_success
        self._on_exhausted = on_exhausted
        self._rng = rng
        self._sleep = sleep
        self._metrics = metrics

        self._state = RetryState.IDLE
        self._task: Optional[asyncio.Task] = None
        self._deadline: Optional[float] = None
        self._listeners: List[StateListener] = []

        self.logger = logger.with_context(operation_key=self.operation_key)

    # ========== Accessors ==========

    @property
    def state(self) -> RetryState:
        return self._state

    @property
    def record(self) -> ErrorRecord:
        """Most recently attached record."""
        return self.records[-1]

    @property
    def is_live(self) -> bool:
        return self._state in LIVE_STATES

    @property
    def countdown_remaining(self) -> Optional[float]:
        """Seconds until the next attempt, while scheduled."""
        if self._state != RetryState.SCHEDULED or self._deadline is None:
            return None
        try:
            now = asyncio.get_running_loop().time()
        except RuntimeError:
            return self.next_delay
        return max(0.0, self._deadline - now)

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    # ========== Control ==========

    def start(self, suspended: bool = False) -> None:
        """
        Start the loop from idle.

        Args:
            suspended: Enter suspended instead of scheduling (link is offline)
        """
        if self._state != RetryState.IDLE:
            return
        if suspended:
            self._transition(RetryState.SUSPENDED)
            return
        self._spawn()

    def suspend(self) -> None:
        """
        Pause the loop while offline.

        Stops the countdown or aborts the in-flight attempt. An aborted
        attempt is not counted.
        """
        if self._state not in (RetryState.SCHEDULED, RetryState.RETRYING):
            return
        self._stop_task()
        self._deadline = None
        self._transition(RetryState.SUSPENDED)

    def resume(self) -> None:
        """Re-enter scheduled with the attempt counter preserved."""
        if self._state != RetryState.SUSPENDED:
            return
        self._spawn()

    def cancel(self) -> None:
        """Stop and discard any pending retry. Idempotent."""
        self._stop_task()
        self._deadline = None
        self.next_delay = None
        if self._state != RetryState.IDLE:
            self._transition(RetryState.IDLE)

    def attach(self, record: ErrorRecord, action: Optional[RecoveryAction] = None) -> None:
        """
        Link a duplicate report of the same operation.

        Args:
            record: Newly reported record
            action: Replacement recovery action, if the caller supplied one
        """
        record.retry_count = self.retry_count
        record.max_retries = self.max_retries
        self.records.append(record)
        if action is not None:
            self.action = action
        self.logger.debug(
            f"Attached duplicate report {record.id}",
            extra={"error_id": record.id, "attached": len(self.records)},
        )

    async def wait(self) -> None:
        """Wait for the running loop task, if any."""
        task = self._task
        if task is not None and not task.done():
            await asyncio.wait({task})

    # ========== Loop ==========

    def _spawn(self) -> None:
        self._schedule_next()
        self._task = asyncio.get_running_loop().create_task(self._run())

    def _schedule_next(self) -> None:
        delay = self.policy.compute_delay(self.retry_count, self._rng())
        self.next_delay = delay
        self._deadline = asyncio.get_running_loop().time() + delay
        self._transition(RetryState.SCHEDULED, delay=delay)

    def _stop_task(self) -> None:
        task = self._task
        self._task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _run(self) -> None:
        while True:
            await self._sleep(self.next_delay)

            self._deadline = None
            self._transition(RetryState.RETRYING)
            try:
                async with track_recovery_attempt(
                    self._metrics, self.operation_key, self.retry_count + 1, self.logger
                ):
                    await self.action()
            except asyncio.CancelledError:
                raise
            except Exception:
                if self._detached():
                    return
                self._count_attempt()
                if self.retry_count >= self.max_retries:
                    self._task = None
                    self._transition(RetryState.EXHAUSTED)
                    await self._notify(self._on_exhausted)
                    return
                self._schedule_next()
                continue

            if self._detached():
                return
            self._task = None
            self._transition(RetryState.SUCCEEDED)
            await self._notify(self._on_success)
            return

    def _detached(self) -> bool:
        # Suspended or cancelled from inside the running attempt
        return self._task is not asyncio.current_task()

    def _count_attempt(self) -> None:
        self.retry_count += 1
        for record in self.records:
            record.retry_count = self.retry_count

    async def _notify(self, callback: Optional[SchedulerCallback]) -> None:
        if callback is None:
            return
        try:
            result = callback(self)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error(f"Retry scheduler callback failed: {e}", exc_info=True)

    def _transition(self, new_state: RetryState, delay: Optional[float] = None) -> None:
        old_state = self._state
        self._state = new_state

        log_retry_transition(
            self.logger,
            self.operation_key,
            old_state.value,
            new_state.value,
            self.retry_count,
            delay=delay,
        )

        for listener in list(self._listeners):
            try:
                listener(self, old_state, new_state)
            except Exception as e:
                self.logger.error(f"Retry state listener failed: {e}", exc_info=True)
