"""
Unit tests for backoff policies and safe persistence.
"""

import pytest
from unittest.mock import AsyncMock

from hypothesis import given, strategies as st

from recovery_engine.config import Settings
from recovery_engine.utils.resilience import (
    BackoffPolicy,
    create_generic_backoff_policy,
    create_network_backoff_policy,
    persist_safely,
)


class TestBackoffPolicy:
    """Test exponential backoff with jitter."""

    def test_first_delay_without_jitter(self):
        policy = BackoffPolicy(base_delay=1.0, max_delay=30.0, jitter_fraction=0.3)

        assert policy.compute_delay(0, 0.0) == 1.0

    def test_first_delay_with_full_jitter(self):
        policy = BackoffPolicy(base_delay=1.0, max_delay=30.0, jitter_fraction=0.3)

        assert policy.compute_delay(0, 1.0) == pytest.approx(1.3)

    def test_delay_doubles_per_attempt(self):
        policy = BackoffPolicy(base_delay=1.0, max_delay=30.0, jitter_fraction=0.0)

        assert [policy.compute_delay(n, 0.5) for n in range(5)] == [1.0, 2.0, 4.0, 8.0, 16.0]

    def test_delay_is_capped(self):
        policy = BackoffPolicy(base_delay=1.0, max_delay=10.0, jitter_fraction=0.3)

        assert policy.base_for(10) == 10.0
        assert policy.compute_delay(10, 0.0) == 10.0

    def test_huge_attempt_does_not_overflow(self):
        policy = BackoffPolicy(base_delay=1.0, max_delay=10.0)

        assert policy.base_for(10_000) == 10.0

    def test_negative_attempt_treated_as_first(self):
        policy = BackoffPolicy(base_delay=1.0, max_delay=10.0)

        assert policy.base_for(-3) == 1.0

    def test_jitter_sample_is_clamped(self):
        policy = BackoffPolicy(base_delay=1.0, max_delay=10.0, jitter_fraction=0.3)

        assert policy.compute_delay(0, 5.0) == pytest.approx(1.3)
        assert policy.compute_delay(0, -1.0) == 1.0

    def test_upper_bound(self):
        policy = BackoffPolicy(base_delay=1.0, max_delay=30.0, jitter_fraction=0.3)

        assert policy.upper_bound == pytest.approx(39.0)

    @given(
        attempt=st.integers(min_value=0, max_value=200),
        r=st.floats(min_value=0.0, max_value=1.0, allow_nan=False),
    )
    def test_delay_stays_within_bounds(self, attempt, r):
        policy = BackoffPolicy(base_delay=1.0, max_delay=30.0, jitter_fraction=0.3)

        delay = policy.compute_delay(attempt, r)

        assert 1.0 <= delay <= policy.upper_bound + 1e-9

    @given(r=st.floats(min_value=0.0, max_value=1.0, allow_nan=False))
    def test_delay_is_monotonic_for_fixed_jitter(self, r):
        policy = BackoffPolicy(base_delay=1.0, max_delay=10.0, jitter_fraction=0.3)

        delays = [policy.compute_delay(n, r) for n in range(10)]

        assert delays == sorted(delays)


class TestPolicyFactories:
    """Test policies built from settings."""

    def test_network_policy_uses_network_cap(self):
        policy = create_network_backoff_policy(Settings())

        assert policy.base_delay == 1.0
        assert policy.max_delay == 30.0
        assert policy.jitter_fraction == 0.3

    def test_generic_policy_uses_generic_cap(self):
        policy = create_generic_backoff_policy(Settings())

        assert policy.max_delay == 10.0

    def test_policy_reads_custom_settings(self):
        policy = create_network_backoff_policy(Settings(retry_base_delay=0.5, retry_max_delay_network=5))

        assert policy.base_delay == 0.5
        assert policy.max_delay == 5.0


class TestPersistSafely:
    """Test store writes that must never propagate failures."""

    @pytest.mark.asyncio
    async def test_returns_true_on_success(self):
        operation = AsyncMock()

        result = await persist_safely(operation, "value", context={"operation": "test"})

        assert result is True
        operation.assert_awaited_once_with("value")

    @pytest.mark.asyncio
    async def test_returns_false_on_failure(self, caplog):
        operation = AsyncMock(side_effect=RuntimeError("store down"))

        result = await persist_safely(operation, context={"operation": "set_offline_flag"})

        assert result is False
        assert "Failed to persist state" in caplog.text
