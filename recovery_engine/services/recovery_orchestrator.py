"""
Recovery Orchestrator component.

Owns the process-wide recovery state and exposes the
``report / retry / clear / escalate`` contract to the rest of the
application. It wires the classifier, strategy selector, connectivity
monitor, retry schedulers, health tracker and escalation generator
together and is the single writer of the health window and the durable
offline flag.
"""

import asyncio
import inspect
import random
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from recovery_engine.config import Settings
from recovery_engine.models.api_response import RecoverySnapshot, RetryState
from recovery_engine.models.connectivity import ConnectivityState, ConnectivityStatus
from recovery_engine.models.error import AmbientContext, ErrorRecord
from recovery_engine.models.escalation import EscalationTrigger, SupportEscalation
from recovery_engine.models.taxonomy import (
    ErrorCategory,
    ErrorSeverity,
    RecoveryStrategy,
    ResolutionMethod,
)
from recovery_engine.services.connectivity_monitor import ConnectivityMonitor
from recovery_engine.services.error_classifier import ErrorClassifier
from recovery_engine.services.health_tracker import HealthTracker
from recovery_engine.services.message_catalog import MessageCatalog, get_message_catalog
from recovery_engine.services.retry_scheduler import RecoveryAction, RetryScheduler
from recovery_engine.services.strategy_selector import StrategySelector
from recovery_engine.services.support_escalation import SupportEscalationGenerator
from recovery_engine.utils.logging import get_logger, log_error_record, log_escalation
from recovery_engine.utils.metrics import RecoveryMetrics, emit_metric, track_recovery_attempt
from recovery_engine.utils.resilience import (
    create_generic_backoff_policy,
    create_network_backoff_policy,
    persist_safely,
)

logger = get_logger(__name__)

SnapshotListener = Callable[[RecoverySnapshot], Any]
EscalationListener = Callable[[SupportEscalation], Any]


class RecoveryError(Exception):
    """Base class for orchestrator contract errors."""
    pass


class NoActiveErrorError(RecoveryError):
    """Raised when an operation needs a current error and there is none."""
    pass


class NoRecoveryActionError(RecoveryError):
    """Raised when a retry has neither a custom handler nor a registered action."""
    pass


class RecoveryOrchestrator:
    """
    Orchestrates error recovery for one client session.

    Args:
        settings: Engine settings
        offline_store: Durable store for the offline flag (RedisClient or
            compatible). When None the flag lives in memory only.
        catalog: Message catalog
        clock: Monotonic clock shared by the monitor and tracker
        rng: Jitter source for retry backoff
        sleep: Awaitable sleep used by retry schedulers
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        offline_store: Any = None,
        catalog: Optional[MessageCatalog] = None,
        clock: Callable[[], float] = time.monotonic,
        rng: Callable[[], float] = random.random,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if settings is None:
            from recovery_engine.config import settings as default_settings
            settings = default_settings

        self.settings = settings
        self.offline_store = offline_store
        self.catalog = catalog or get_message_catalog(settings.message_catalog_path)

        self.monitor = ConnectivityMonitor.from_settings(settings, clock=clock)
        self.classifier = ErrorClassifier(self.catalog, max_retries=settings.max_retries)
        self.selector = StrategySelector(self.catalog)
        self.tracker = HealthTracker.from_settings(settings, clock=clock)
        self.escalation = SupportEscalationGenerator.from_settings(settings, self.catalog)
        self.metrics = RecoveryMetrics()

        self._network_policy = create_network_backoff_policy(settings)
        self._generic_policy = create_generic_backoff_policy(settings)
        self._rng = rng
        self._sleep = sleep

        self._current: Optional[ErrorRecord] = None
        self._parked: List[ErrorRecord] = []
        self._schedulers: Dict[str, RetryScheduler] = {}
        self._actions: Dict[str, RecoveryAction] = {}
        self._escalated: Set[str] = set()
        self._resolved: Set[str] = set()
        self._last_escalation: Optional[SupportEscalation] = None
        self._manual_retry_in_flight = False
        self._offline = False

        self._listeners: List[SnapshotListener] = []
        self._escalation_listeners: List[EscalationListener] = []
        self._background: Set[asyncio.Task] = set()
        self._unsubscribe_monitor: Optional[Callable[[], None]] = None
        self._started = False

    # ========== Lifecycle ==========

    async def start(self) -> None:
        """Subscribe to connectivity changes and load the persisted offline flag."""
        if self._started:
            return
        self._started = True
        self._unsubscribe_monitor = self.monitor.subscribe(self._on_connectivity)

        if self.offline_store is not None:
            try:
                flag = await self.offline_store.get_offline_flag()
            except Exception as e:
                logger.warning(f"Could not load offline flag, starting online: {e}")
                flag = None
            if flag is not None and flag.offline:
                self._offline = True
                logger.info(
                    "Restored offline mode from persisted flag",
                    extra={"since": flag.since.isoformat()},
                )

        logger.info("Recovery orchestrator started")

    async def shutdown(self) -> None:
        """Cancel schedulers and background work, and reset session state."""
        for scheduler in self._schedulers.values():
            scheduler.cancel()
        self._schedulers.clear()

        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._background.clear()

        if self._unsubscribe_monitor is not None:
            self._unsubscribe_monitor()
            self._unsubscribe_monitor = None
        self.monitor.close()

        self.tracker.reset()
        self._current = None
        self._parked.clear()
        self._actions.clear()
        self._escalated.clear()
        self._resolved.clear()
        self._listeners.clear()
        self._escalation_listeners.clear()
        self._started = False

        logger.info("Recovery orchestrator shut down")

    async def wait_idle(self) -> None:
        """Flush pending connectivity publication and wait for background writes."""
        self.monitor.flush()
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ========== Accessors ==========

    @property
    def connectivity(self) -> ConnectivityState:
        return self.monitor.state

    @property
    def error_rate(self) -> float:
        return self.tracker.error_rate

    @property
    def frustration_score(self) -> float:
        return self.tracker.frustration_score

    @property
    def offline_mode(self) -> bool:
        return self._offline

    @property
    def current_error(self) -> Optional[ErrorRecord]:
        return self._current

    @property
    def parked_errors(self) -> List[ErrorRecord]:
        return list(self._parked)

    @property
    def last_escalation(self) -> Optional[SupportEscalation]:
        return self._last_escalation

    @property
    def is_recovering(self) -> bool:
        if self._manual_retry_in_flight:
            return True
        scheduler = self.scheduler_for(self._current)
        return scheduler is not None and scheduler.state in (RetryState.SCHEDULED, RetryState.RETRYING)

    def scheduler_for(self, record: Optional[ErrorRecord]) -> Optional[RetryScheduler]:
        if record is None:
            return None
        scheduler = self._schedulers.get(record.operation_key)
        if scheduler is not None and any(r.id == record.id for r in scheduler.records):
            return scheduler
        return None

    def find_error(self, error_id: str) -> Optional[ErrorRecord]:
        if self._current is not None and self._current.id == error_id:
            return self._current
        for record in self._parked:
            if record.id == error_id:
                return record
        entry = self.tracker.entry_for(error_id)
        return entry.record if entry else None

    def recommended_actions(self, record: ErrorRecord) -> List[str]:
        return self.selector.recommended_actions(record)

    def snapshot(self) -> RecoverySnapshot:
        current = self._current
        scheduler = self.scheduler_for(current)
        return RecoverySnapshot(
            current_error=current,
            is_recovering=self.is_recovering,
            connectivity=self.monitor.state,
            error_rate=self.error_rate,
            frustration_score=self.frustration_score,
            offline_mode=self._offline,
            retry_state=scheduler.state if scheduler else None,
            retry_countdown=scheduler.countdown_remaining if scheduler else None,
            presentation=self.selector.describe_presentation(current) if current else None,
            last_escalation=self._last_escalation,
            parked_count=len(self._parked),
        )

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """
        Register a listener called with a fresh snapshot after each change.

        Returns:
            Callable that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def on_escalation(self, listener: EscalationListener) -> Callable[[], None]:
        """Register a channel adapter called with each escalation payload."""
        self._escalation_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._escalation_listeners:
                self._escalation_listeners.remove(listener)

        return unsubscribe

    def register_action(self, operation_key: str, action: RecoveryAction) -> None:
        """Register the recovery action used to retry an operation."""
        self._actions[operation_key] = action

    # ========== Connectivity inputs ==========

    def set_online(self, online: bool) -> None:
        self.monitor.set_online(online)
        if online and self._offline and self.monitor.published_status != ConnectivityStatus.OFFLINE:
            # Offline mode came from the persisted flag, not from the monitor
            self._apply_offline(False)

    def update_link_quality(
        self,
        rtt_ms: Optional[float] = None,
        downlink_mbps: Optional[float] = None,
        effective_type: Optional[str] = None,
    ) -> None:
        self.monitor.update_link_quality(rtt_ms, downlink_mbps, effective_type)

    async def record_success(self) -> None:
        """A request succeeded somewhere in the application."""
        self.tracker.record_success()
        self.monitor.record_successful_request()
        if self._offline and self.monitor.published_status != ConnectivityStatus.OFFLINE:
            self._apply_offline(False)
        self._notify()

    def _on_connectivity(self, state: ConnectivityState) -> None:
        self._apply_offline(state.status == ConnectivityStatus.OFFLINE)

    def _apply_offline(self, offline: bool) -> None:
        if offline == self._offline:
            return
        self._offline = offline

        if offline:
            if self.settings.enable_offline_support and self.offline_store is not None:
                self._spawn_background(persist_safely(
                    self.offline_store.set_offline_flag,
                    datetime.now(timezone.utc),
                    context={"operation": "set_offline_flag"},
                ))
            for scheduler in self._schedulers.values():
                scheduler.suspend()
        else:
            if self.offline_store is not None:
                self._spawn_background(persist_safely(
                    self.offline_store.clear_offline_flag,
                    context={"operation": "clear_offline_flag"},
                ))
            for scheduler in self._schedulers.values():
                scheduler.resume()

        self._refilter_strategies()
        logger.info(f"Offline mode {'entered' if offline else 'left'}")
        emit_metric("recovery.offline_mode", 1.0 if offline else 0.0)
        self._notify()

    def _refilter_strategies(self) -> None:
        state = self.monitor.state
        if self._offline and state.status != ConnectivityStatus.OFFLINE:
            state = state.model_copy(update={"status": ConnectivityStatus.OFFLINE})
        records = ([self._current] if self._current else []) + self._parked
        for record in records:
            record.recovery_strategy = self.selector.select(record.category, state)

    # ========== Contract ==========

    async def report(
        self,
        raw_failure: Any,
        context: Optional[AmbientContext] = None,
        action: Optional[RecoveryAction] = None,
    ) -> ErrorRecord:
        """
        Report a failure.

        Args:
            raw_failure: Exception, message, mapping or RawFailure
            context: Ambient context of the failing call
            action: Async recovery action for automatic retries

        Returns:
            Classified ErrorRecord
        """
        connectivity = self.monitor.state
        if self._offline and connectivity.status != ConnectivityStatus.OFFLINE:
            connectivity = connectivity.model_copy(update={"status": ConnectivityStatus.OFFLINE})

        record = self.classifier.classify(raw_failure, context, connectivity)

        log_error_record(logger, record)
        self.metrics.record_error(record.category.value)
        emit_metric("recovery.errors_reported", 1, category=record.category.value, severity=record.severity.value)

        self.tracker.record(record)
        self._claim_slot(record)

        if action is not None:
            self._actions[record.operation_key] = action

        if record.can_auto_recover:
            self._start_auto_recovery(record, action)

        self._evaluate_frustration()
        self._notify()
        return record

    async def retry(self, custom_handler: Optional[RecoveryAction] = None) -> bool:
        """
        Manually retry the current error once.

        Args:
            custom_handler: Async action to run instead of the registered one

        Returns:
            True if the action succeeded

        Raises:
            NoActiveErrorError: If there is no current error
            NoRecoveryActionError: If no handler is available
        """
        record = self._current
        if record is None:
            raise NoActiveErrorError("No active error to retry")

        handler = custom_handler or self._actions.get(record.operation_key)
        if handler is None:
            raise NoRecoveryActionError(f"No recovery action for {record.operation_key}")

        scheduler = self._schedulers.pop(record.operation_key, None)
        records = self._operation_records(record, scheduler)
        if scheduler is not None:
            scheduler.cancel()

        self._manual_retry_in_flight = True
        self._notify()
        try:
            async with track_recovery_attempt(
                self.metrics, record.operation_key, record.retry_count + 1, logger
            ):
                await handler()
        except asyncio.CancelledError:
            raise
        except Exception:
            record.retry_count += 1
            emit_metric("recovery.manual_retry", 0, category=record.category.value)
            if self._needs_support(record):
                self._auto_escalate(record, EscalationTrigger.AUTO_RETRY_FAILED)
            self._evaluate_frustration()
            return False
        finally:
            self._manual_retry_in_flight = False
            self._notify()

        emit_metric("recovery.manual_retry", 1, category=record.category.value)
        for linked in records:
            self._resolve(linked, ResolutionMethod.RETRY_SUCCESS)
        await self.record_success()
        for linked in records:
            self._release(linked)
        self._notify()
        return True

    async def clear(self) -> None:
        """Dismiss the current error and decay frustration."""
        record = self._current
        if record is None:
            return

        scheduler = self._schedulers.pop(record.operation_key, None)
        records = self._operation_records(record, scheduler)
        if scheduler is not None:
            scheduler.cancel()
        for linked in records:
            self._resolve(linked, ResolutionMethod.MANUAL_CLEAR)
        self.tracker.decay(self.settings.clear_decay_points)

        logger.info("Cleared current error", extra={"error_id": record.id, "linked": len(records)})
        for linked in records:
            self._release(linked)
        self._notify()

    async def escalate(self, trigger: EscalationTrigger = EscalationTrigger.MANUAL) -> SupportEscalation:
        """
        Escalate the current error to human support.

        Raises:
            NoActiveErrorError: If there is no current error
        """
        record = self._current
        if record is None:
            raise NoActiveErrorError("No active error to escalate")
        payload = self._escalate(record, trigger)
        self._notify()
        return payload

    # ========== Internals ==========

    def _claim_slot(self, record: ErrorRecord) -> None:
        current = self._current
        if current is None:
            self._current = record
        elif record.severity.rank > current.severity.rank:
            self._parked.append(current)
            self._current = record
            logger.info(
                f"Error {record.id} pre-empted {current.id}",
                extra={"error_id": record.id, "parked_error_id": current.id},
            )

    def _resolve(self, record: ErrorRecord, method: ResolutionMethod) -> None:
        self._resolved.add(record.id)
        self.tracker.resolve(record.id, method)

    @staticmethod
    def _operation_records(record: ErrorRecord, scheduler: Optional[RetryScheduler]) -> List[ErrorRecord]:
        """The record plus every duplicate report attached to its scheduler."""
        if scheduler is not None and any(r.id == record.id for r in scheduler.records):
            return list(scheduler.records)
        return [record]

    def _release(self, record: ErrorRecord) -> None:
        """Drop a resolved record from the slot and promote a parked one."""
        # Resolution is tracked here only while the record is current or parked
        self._resolved.discard(record.id)
        self._parked = [r for r in self._parked if r.id != record.id]
        if self._current is None or self._current.id != record.id:
            return

        self._current = None
        candidates = [r for r in self._parked if r.id not in self._resolved]
        self._resolved.difference_update(r.id for r in self._parked)
        self._parked = candidates

        if candidates:
            promoted = max(reversed(candidates), key=lambda r: r.severity.rank)
            self._parked.remove(promoted)
            self._current = promoted
            logger.info("Promoted parked error", extra={"error_id": promoted.id})

    def _start_auto_recovery(self, record: ErrorRecord, action: Optional[RecoveryAction]) -> None:
        scheduler = self._schedulers.get(record.operation_key)
        if scheduler is not None and scheduler.is_live:
            scheduler.attach(record, action)
            return

        act = action or self._actions.get(record.operation_key)
        if act is None:
            logger.debug(f"No recovery action for {record.operation_key}, waiting for manual retry")
            return

        if scheduler is not None:
            scheduler.cancel()

        policy = self._network_policy if record.category == ErrorCategory.NETWORK else self._generic_policy
        scheduler = RetryScheduler(
            record,
            act,
            policy,
            on_success=self._on_scheduler_success,
            on_exhausted=self._on_scheduler_exhausted,
            rng=self._rng,
            sleep=self._sleep,
            metrics=self.metrics,
        )
        scheduler.add_listener(lambda *_: self._notify())
        self._schedulers[record.operation_key] = scheduler
        scheduler.start(suspended=self._offline)

    async def _on_scheduler_success(self, scheduler: RetryScheduler) -> None:
        for record in scheduler.records:
            self._resolve(record, ResolutionMethod.RETRY_SUCCESS)
        await self.record_success()
        for record in scheduler.records:
            self._release(record)
        if self._schedulers.get(scheduler.operation_key) is scheduler:
            del self._schedulers[scheduler.operation_key]
        self._notify()

    def _on_scheduler_exhausted(self, scheduler: RetryScheduler) -> None:
        record = scheduler.record
        logger.warning(
            f"Automatic recovery exhausted for {scheduler.operation_key}, manual options remain",
            extra={"error_id": record.id, "retry_count": scheduler.retry_count},
        )
        emit_metric("recovery.retries_exhausted", 1, category=record.category.value)
        if self._needs_support(record):
            self._auto_escalate(record, EscalationTrigger.AUTO_RETRY_FAILED)
        self._evaluate_frustration()
        self._notify()

    @staticmethod
    def _needs_support(record: ErrorRecord) -> bool:
        return (
            record.severity == ErrorSeverity.CRITICAL
            and RecoveryStrategy.CONTACT_SUPPORT in record.recovery_strategy
        )

    def _evaluate_frustration(self) -> None:
        record = self._current
        if record is None:
            return
        if record.id in self._resolved:
            return
        if self.tracker.frustration_score > self.settings.frustration_escalation_threshold:
            self._auto_escalate(record, EscalationTrigger.USER_FRUSTRATED)

    def _auto_escalate(self, record: ErrorRecord, trigger: EscalationTrigger) -> None:
        if not self.settings.enable_auto_escalation or record.id in self._escalated:
            return
        self._escalate(record, trigger)

    def _escalate(self, record: ErrorRecord, trigger: EscalationTrigger) -> SupportEscalation:
        payload = self.escalation.generate(record, self.tracker.snapshot(), trigger)
        self._resolve(record, ResolutionMethod.ESCALATION)
        self._escalated.add(record.id)
        self._last_escalation = payload

        self.metrics.record_escalation(trigger.value)
        emit_metric("recovery.escalations", 1, trigger=trigger.value, priority=payload.ticket.priority.value)
        log_escalation(
            logger,
            record.id,
            trigger.value,
            payload.selected_channel.value,
            payload.ticket.ticket_id,
            frustration_score=payload.frustration_score,
        )

        for listener in list(self._escalation_listeners):
            self._call_listener(listener, payload)
        return payload

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            self._call_listener(listener, snapshot)

    def _call_listener(self, listener: Callable[[Any], Any], payload: Any) -> None:
        try:
            result = listener(payload)
            if inspect.isawaitable(result):
                self._spawn_background(result)
        except Exception as e:
            logger.error(f"Recovery listener failed: {e}", exc_info=True)

    def _spawn_background(self, awaitable: Awaitable[Any]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop, dropping background work")
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return
        task = loop.create_task(awaitable)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
