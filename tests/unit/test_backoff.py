"""
Tests for backoff, retention, and job option types.
"""

import pytest
from pydantic import ValidationError

from jobengine.constants import BackoffType, JobState
from jobengine.types.job import (
    BackoffPolicy,
    EnqueueOptions,
    JobOptions,
    RateLimit,
    RetentionPolicy,
    RetentionRule,
    WorkerConfig,
)


class TestBackoffPolicy:
    """Tests for retry delay computation."""

    def test_exponential_doubles_per_attempt(self):
        """Test exponential delay is base * 2^(attempt - 1)."""
        policy = BackoffPolicy(type=BackoffType.EXPONENTIAL, delay_ms=1000)

        delays = [policy.compute_delay_ms(i) for i in range(1, 5)]

        assert delays == [1000, 2000, 4000, 8000]

    def test_check_source_delays(self):
        """Test the 5 second base used for source checks."""
        policy = BackoffPolicy(type=BackoffType.EXPONENTIAL, delay_ms=5000)

        assert policy.compute_delay_ms(1) == 5000
        assert policy.compute_delay_ms(2) == 10000

    def test_fixed_delay_is_constant(self):
        """Test fixed backoff ignores the attempt count."""
        policy = BackoffPolicy(type=BackoffType.FIXED, delay_ms=750)

        assert {policy.compute_delay_ms(i) for i in range(1, 6)} == {750}

    def test_delay_is_capped(self):
        """Test a large attempt count never exceeds the cap."""
        policy = BackoffPolicy(type=BackoffType.EXPONENTIAL, delay_ms=1000)

        assert policy.compute_delay_ms(40, max_delay_ms=60_000) == 60_000

    def test_default_cap_is_one_hour(self):
        """Test the default cap applies without an explicit bound."""
        policy = BackoffPolicy(type=BackoffType.EXPONENTIAL, delay_ms=1000)

        assert policy.compute_delay_ms(30) == 3_600_000

    def test_zero_attempts_treated_as_first(self):
        """Test attempt counts below one use the base delay."""
        policy = BackoffPolicy(delay_ms=200)

        assert policy.compute_delay_ms(0) == 200

    def test_jitter_only_shortens_delay(self):
        """Test jitter keeps the delay within [delay * (1 - jitter), delay]."""
        policy = BackoffPolicy(delay_ms=1000, jitter=0.5)

        for _ in range(50):
            delay = policy.compute_delay_ms(2)
            assert 1000 <= delay <= 2000

    def test_negative_delay_rejected(self):
        """Test validation rejects a negative base delay."""
        with pytest.raises(ValidationError):
            BackoffPolicy(delay_ms=-1)

    def test_policy_is_immutable(self):
        """Test policies cannot be mutated after creation."""
        policy = BackoffPolicy(delay_ms=1000)

        with pytest.raises(ValidationError):
            policy.delay_ms = 5


class TestRetentionPolicy:
    """Tests for retention rules."""

    def test_rule_for_state(self):
        """Test completed and failed jobs get their own rule."""
        policy = RetentionPolicy(
            on_complete=RetentionRule(count=100, age_seconds=3600),
            on_fail=RetentionRule(count=500, age_seconds=86400),
        )

        assert policy.rule_for(JobState.COMPLETED).count == 100
        assert policy.rule_for(JobState.FAILED).count == 500

    def test_default_keeps_everything(self):
        """Test the default rule has no ceilings."""
        rule = RetentionPolicy().rule_for(JobState.COMPLETED)

        assert rule.count is None
        assert rule.age_seconds is None


class TestOptions:
    """Tests for job and worker options."""

    def test_job_options_require_an_attempt(self):
        """Test attempts must be at least one."""
        with pytest.raises(ValidationError):
            JobOptions(attempts=0)

    def test_enqueue_options_default_to_no_overrides(self):
        """Test empty enqueue options override nothing."""
        options = EnqueueOptions()

        assert options.attempts is None
        assert options.backoff is None
        assert options.delay_ms == 0

    def test_rate_limit_window_seconds(self):
        """Test window conversion to seconds."""
        assert RateLimit(max=10, window_ms=1000).window_seconds == 1.0

    def test_rate_limit_requires_positive_values(self):
        """Test zero limits are rejected."""
        with pytest.raises(ValidationError):
            RateLimit(max=0, window_ms=1000)
        with pytest.raises(ValidationError):
            RateLimit(max=1, window_ms=0)

    def test_worker_concurrency_must_be_positive(self):
        """Test concurrency below one is rejected."""
        with pytest.raises(ValidationError):
            WorkerConfig(queue_name="q", concurrency=0)
