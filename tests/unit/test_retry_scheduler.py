"""
Unit tests for the retry scheduler state machine.
"""

import asyncio
from datetime import datetime, timezone
from typing import List, Tuple

import pytest

from recovery_engine.models.api_response import RetryState
from recovery_engine.models.error import AmbientContext, ErrorRecord
from recovery_engine.models.taxonomy import ErrorCategory
from recovery_engine.services.error_classifier import ErrorClassifier
from recovery_engine.services.message_catalog import MessageCatalog
from recovery_engine.services.retry_scheduler import RetryScheduler
from recovery_engine.utils.metrics import RecoveryMetrics
from recovery_engine.utils.resilience import BackoffPolicy


NOW = datetime(2024, 5, 6, 15, 0, tzinfo=timezone.utc)


class ControlledSleep:
    """Sleep stand-in that lets a number of calls through, then blocks."""

    def __init__(self, passes: int = 1_000):
        self.delays: List[float] = []
        self.passes = passes
        self.gate = asyncio.Event()

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self.passes > 0:
            self.passes -= 1
            await asyncio.sleep(0)
            return
        await self.gate.wait()


class FlakyAction:
    """Recovery action failing a fixed number of times before succeeding."""

    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError(f"attempt {self.calls} failed")
        return "ok"


async def settle(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def record() -> ErrorRecord:
    classifier = ErrorClassifier(MessageCatalog.load(), max_retries=3)
    return classifier.classify("Failed to fetch", AmbientContext(operation_key="load_feed"), now=NOW)


@pytest.fixture
def policy() -> BackoffPolicy:
    return BackoffPolicy(base_delay=1.0, max_delay=30.0, jitter_fraction=0.3)


def make_scheduler(record, policy, action, sleep, **kwargs) -> RetryScheduler:
    return RetryScheduler(record, action, policy, rng=lambda: 0.0, sleep=sleep, **kwargs)


class TestSuccessPath:
    """Test recovery that eventually succeeds."""

    @pytest.mark.asyncio
    async def test_succeeds_after_failures(self, record, policy):
        action = FlakyAction(failures=2)
        sleep = ControlledSleep()
        succeeded = []
        scheduler = make_scheduler(record, policy, action, sleep, on_success=succeeded.append)

        scheduler.start()
        await scheduler.wait()

        assert scheduler.state == RetryState.SUCCEEDED
        assert not scheduler.is_live
        assert action.calls == 3
        assert scheduler.retry_count == 2
        assert record.retry_count == 2
        assert sleep.delays == [1.0, 2.0, 4.0]
        assert succeeded == [scheduler]

    @pytest.mark.asyncio
    async def test_first_retry_delay_within_jitter(self, record, policy):
        sleep = ControlledSleep()
        scheduler = RetryScheduler(record, FlakyAction(0), policy, rng=lambda: 0.999, sleep=sleep)

        scheduler.start()
        await scheduler.wait()

        assert 1.0 <= sleep.delays[0] <= 1.3

    @pytest.mark.asyncio
    async def test_async_success_callback_is_awaited(self, record, policy):
        seen = []

        async def on_success(scheduler):
            await asyncio.sleep(0)
            seen.append(scheduler.state)

        scheduler = make_scheduler(record, policy, FlakyAction(0), ControlledSleep(), on_success=on_success)

        scheduler.start()
        await scheduler.wait()

        assert seen == [RetryState.SUCCEEDED]

    @pytest.mark.asyncio
    async def test_transitions_are_reported(self, record, policy):
        transitions: List[Tuple[RetryState, RetryState]] = []
        scheduler = make_scheduler(record, policy, FlakyAction(0), ControlledSleep())
        scheduler.add_listener(lambda s, old, new: transitions.append((old, new)))

        scheduler.start()
        await scheduler.wait()

        assert transitions == [
            (RetryState.IDLE, RetryState.SCHEDULED),
            (RetryState.SCHEDULED, RetryState.RETRYING),
            (RetryState.RETRYING, RetryState.SUCCEEDED),
        ]

    @pytest.mark.asyncio
    async def test_failing_callback_is_contained(self, record, policy):
        def on_success(scheduler):
            raise RuntimeError("callback bug")

        scheduler = make_scheduler(record, policy, FlakyAction(0), ControlledSleep(), on_success=on_success)

        scheduler.start()
        await scheduler.wait()

        assert scheduler.state == RetryState.SUCCEEDED

    @pytest.mark.asyncio
    async def test_metrics_count_attempts(self, record, policy):
        metrics = RecoveryMetrics()
        scheduler = make_scheduler(record, policy, FlakyAction(1), ControlledSleep(), metrics=metrics)

        scheduler.start()
        await scheduler.wait()

        assert metrics.attempts == 2
        assert metrics.failures == 1
        assert metrics.successes == 1


class TestExhaustion:
    """Test retry budget exhaustion."""

    @pytest.mark.asyncio
    async def test_exhausts_after_max_retries(self, record, policy):
        action = FlakyAction(failures=100)
        sleep = ControlledSleep()
        exhausted = []
        scheduler = make_scheduler(record, policy, action, sleep, on_exhausted=exhausted.append)

        scheduler.start()
        await scheduler.wait()

        assert scheduler.state == RetryState.EXHAUSTED
        assert action.calls == 3
        assert scheduler.retry_count == 3
        assert record.retries_exhausted
        assert sleep.delays == [1.0, 2.0, 4.0]
        assert exhausted == [scheduler]

    @pytest.mark.asyncio
    async def test_no_attempts_after_exhaustion(self, record, policy):
        action = FlakyAction(failures=100)
        scheduler = make_scheduler(record, policy, action, ControlledSleep())

        scheduler.start()
        await scheduler.wait()
        scheduler.start()
        scheduler.resume()
        await settle()

        assert action.calls == 3
        assert scheduler.state == RetryState.EXHAUSTED

    @pytest.mark.asyncio
    async def test_delays_are_capped(self, record):
        record.max_retries = 8
        policy = BackoffPolicy(base_delay=1.0, max_delay=10.0, jitter_fraction=0.3)
        sleep = ControlledSleep()
        scheduler = make_scheduler(record, policy, FlakyAction(100), sleep)

        scheduler.start()
        await scheduler.wait()

        assert sleep.delays == [1.0, 2.0, 4.0, 8.0, 10.0, 10.0, 10.0, 10.0]


class TestSuspendResume:
    """Test offline suspension."""

    @pytest.mark.asyncio
    async def test_start_suspended(self, record, policy):
        action = FlakyAction(0)
        scheduler = make_scheduler(record, policy, action, ControlledSleep())

        scheduler.start(suspended=True)
        await settle()

        assert scheduler.state == RetryState.SUSPENDED
        assert scheduler.is_live
        assert action.calls == 0

        scheduler.resume()
        await scheduler.wait()

        assert scheduler.state == RetryState.SUCCEEDED
        assert action.calls == 1

    @pytest.mark.asyncio
    async def test_suspend_preserves_attempt_count(self, record, policy):
        sleep = ControlledSleep(passes=1)
        action = FlakyAction(failures=100)
        scheduler = make_scheduler(record, policy, action, sleep)

        scheduler.start()
        await settle()

        assert scheduler.state == RetryState.SCHEDULED
        assert scheduler.retry_count == 1
        assert sleep.delays == [1.0, 2.0]

        scheduler.suspend()

        assert scheduler.state == RetryState.SUSPENDED
        assert scheduler.countdown_remaining is None

        scheduler.resume()
        await settle()

        assert scheduler.state == RetryState.SCHEDULED
        assert scheduler.retry_count == 1
        assert sleep.delays == [1.0, 2.0, 2.0]

        scheduler.cancel()
        await settle()

    @pytest.mark.asyncio
    async def test_suspend_aborts_in_flight_attempt_without_counting(self, record, policy):
        release = asyncio.Event()
        calls = []

        async def hanging_action():
            calls.append(1)
            await release.wait()
            raise ConnectionError("still down")

        metrics = RecoveryMetrics()
        scheduler = make_scheduler(record, policy, hanging_action, ControlledSleep(), metrics=metrics)

        scheduler.start()
        await settle()
        assert scheduler.state == RetryState.RETRYING

        scheduler.suspend()
        await settle()

        assert scheduler.state == RetryState.SUSPENDED
        assert scheduler.retry_count == 0
        assert metrics.attempts == 0
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_suspend_from_inside_attempt_stops_loop(self, record, policy):
        holder = {}

        async def action():
            holder["scheduler"].suspend()
            raise ConnectionError("link dropped")

        scheduler = make_scheduler(record, policy, action, ControlledSleep())
        holder["scheduler"] = scheduler

        scheduler.start()
        await settle()

        assert scheduler.state == RetryState.SUSPENDED
        assert scheduler.retry_count == 0

    @pytest.mark.asyncio
    async def test_countdown_while_scheduled(self, record, policy):
        scheduler = make_scheduler(record, policy, FlakyAction(0), ControlledSleep(passes=0))

        scheduler.start()
        await settle()

        remaining = scheduler.countdown_remaining
        assert remaining is not None
        assert 0.0 <= remaining <= 1.0

        scheduler.cancel()
        await settle()


class TestCancel:
    """Test cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_goes_idle_without_attempting(self, record, policy):
        action = FlakyAction(0)
        scheduler = make_scheduler(record, policy, action, ControlledSleep(passes=0))

        scheduler.start()
        await settle()
        scheduler.cancel()
        await settle()

        assert scheduler.state == RetryState.IDLE
        assert action.calls == 0
        assert scheduler.next_delay is None

    @pytest.mark.asyncio
    async def test_cancel_is_idempotent(self, record, policy):
        transitions = []
        scheduler = make_scheduler(record, policy, FlakyAction(0), ControlledSleep(passes=0))
        scheduler.add_listener(lambda s, old, new: transitions.append(new))

        scheduler.start()
        await settle()
        scheduler.cancel()
        scheduler.cancel()
        scheduler.cancel()
        await settle()

        assert transitions == [RetryState.SCHEDULED, RetryState.IDLE]

    def test_cancel_before_start(self, record, policy):
        scheduler = make_scheduler(record, policy, FlakyAction(0), ControlledSleep())

        scheduler.cancel()

        assert scheduler.state == RetryState.IDLE


class TestAttach:
    """Test duplicate reports of the same operation."""

    @pytest.mark.asyncio
    async def test_attach_syncs_counters(self, record, policy):
        classifier = ErrorClassifier(MessageCatalog.load(), max_retries=3)
        duplicate = classifier.classify("Failed to fetch", AmbientContext(operation_key="load_feed"), now=NOW)
        scheduler = make_scheduler(record, policy, FlakyAction(100), ControlledSleep())

        scheduler.attach(duplicate)
        scheduler.start()
        await scheduler.wait()

        assert scheduler.records == [record, duplicate]
        assert scheduler.record is duplicate
        assert duplicate.retry_count == 3
        assert record.retry_count == 3

    @pytest.mark.asyncio
    async def test_attach_replaces_action(self, record, policy):
        original = FlakyAction(100)
        replacement = FlakyAction(0)
        scheduler = make_scheduler(record, policy, original, ControlledSleep())

        scheduler.attach(record.model_copy(update={"id": "err_duplicate"}), replacement)
        scheduler.start()
        await scheduler.wait()

        assert original.calls == 0
        assert replacement.calls == 1
        assert scheduler.state == RetryState.SUCCEEDED
