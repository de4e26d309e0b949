"""
Resilience pattern tests (circuit breaker, retry policy, error stats).
"""

import pytest

from healthdata.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitState,
)
from healthdata.resilience.error_stats import ErrorStats
from healthdata.resilience.errors import ErrorKind, RetryStrategy, UnknownProviderError
from healthdata.resilience.retry_policy import RetryConfig, RetryPolicy


class TestCircuitBreaker:
    """Tests for circuit breaker pattern."""

    def test_initial_state_is_closed(self, clock):
        """Test circuit breaker starts in closed state."""
        cb = CircuitBreaker(name="cdc", failure_threshold=5, clock=clock)
        assert cb.state == CircuitState.CLOSED
        assert cb.reopen_at is None

    def test_opens_after_failure_threshold(self, clock):
        """Test circuit opens after exactly failure_threshold failures."""
        cb = CircuitBreaker(name="cdc", failure_threshold=5, open_duration=60, clock=clock)
        for _ in range(4):
            cb.record_failure()
        assert cb.state == CircuitState.CLOSED

        cb.record_failure()
        assert cb.state == CircuitState.OPEN
        assert cb.reopen_at == clock.now + 60

    def test_success_resets_consecutive_failures(self, clock):
        """Test a success while closed zeroes the failure streak."""
        cb = CircuitBreaker(name="cdc", failure_threshold=3, clock=clock)
        cb.record_failure()
        cb.record_failure()
        cb.record_success()
        assert cb.consecutive_failures == 0

        cb.record_failure()
        cb.record_failure()
        assert cb.state == CircuitState.CLOSED

    def test_blocks_calls_when_open(self, clock):
        """Test circuit blocks calls when open."""
        cb = CircuitBreaker(name="cdc", failure_threshold=1, clock=clock)
        cb.record_failure()
        assert cb.state == CircuitState.OPEN
        assert cb.can_attempt() is False
        assert cb.get_stats().blocked_requests == 1

    def test_allows_calls_when_closed(self, clock):
        """Test circuit allows calls when closed."""
        cb = CircuitBreaker(name="cdc", failure_threshold=3, clock=clock)
        assert cb.can_attempt() is True

    def test_still_rejects_just_before_reopen_at(self, clock):
        cb = CircuitBreaker(name="cdc", failure_threshold=1, open_duration=60, clock=clock)
        cb.record_failure()
        reopen_at = cb.reopen_at

        assert cb.can_attempt(now=reopen_at - 0.001) is False
        assert cb.state == CircuitState.OPEN

    def test_half_open_at_reopen_at(self, clock):
        cb = CircuitBreaker(name="cdc", failure_threshold=1, open_duration=60, clock=clock)
        cb.record_failure()

        assert cb.can_attempt(now=cb.reopen_at) is True
        assert cb.state == CircuitState.HALF_OPEN

    def test_half_open_success_closes(self, clock):
        cb = CircuitBreaker(name="cdc", failure_threshold=2, open_duration=60, clock=clock)
        cb.record_failure()
        cb.record_failure()
        clock.advance(60)
        assert cb.can_attempt() is True

        cb.record_success()
        assert cb.state == CircuitState.CLOSED
        assert cb.consecutive_failures == 0
        assert cb.reopen_at is None

    def test_half_open_failure_reopens_with_fresh_reopen_at(self, clock):
        cb = CircuitBreaker(name="cdc", failure_threshold=1, open_duration=60, clock=clock)
        cb.record_failure()
        first_reopen = cb.reopen_at

        clock.advance(75)
        assert cb.can_attempt() is True
        cb.record_failure()

        assert cb.state == CircuitState.OPEN
        assert cb.reopen_at == clock.now + 60
        assert cb.reopen_at > first_reopen

    def test_half_open_admits_single_trial(self, clock):
        cb = CircuitBreaker(name="cdc", failure_threshold=1, open_duration=60, clock=clock)
        cb.record_failure()
        clock.advance(60)

        assert cb.can_attempt() is True
        assert cb.can_attempt() is False

    def test_half_open_trial_bound_is_configurable(self, clock):
        cb = CircuitBreaker(
            name="cdc", failure_threshold=1, open_duration=60, half_open_max_calls=2, clock=clock
        )
        cb.record_failure()
        clock.advance(60)

        assert cb.can_attempt() is True
        assert cb.can_attempt() is True
        assert cb.can_attempt() is False

    def test_release_trial_frees_slot(self, clock):
        cb = CircuitBreaker(name="cdc", failure_threshold=1, open_duration=60, clock=clock)
        cb.record_failure()
        clock.advance(60)
        trial = cb.admit()
        assert trial.is_trial

        cb.release_trial(trial)
        assert cb.can_attempt() is True

    def test_release_of_closed_admission_keeps_trial_slot(self, clock):
        cb = CircuitBreaker(name="cdc", failure_threshold=1, open_duration=60, clock=clock)
        earlier = cb.admit()
        assert earlier.state == CircuitState.CLOSED
        assert not earlier.is_trial

        cb.record_failure()
        clock.advance(60)
        assert cb.admit().is_trial

        cb.release_trial(earlier)
        assert cb.can_attempt() is False

    def test_release_from_earlier_half_open_window_is_ignored(self, clock):
        cb = CircuitBreaker(name="cdc", failure_threshold=1, open_duration=60, clock=clock)
        cb.record_failure()
        clock.advance(60)
        stale = cb.admit()

        cb.record_failure()
        clock.advance(60)
        assert cb.admit().is_trial

        cb.release_trial(stale)
        assert cb.can_attempt() is False

    def test_success_while_open_does_not_reset(self, clock):
        cb = CircuitBreaker(name="cdc", failure_threshold=2, clock=clock)
        cb.record_failure()
        cb.record_failure()
        cb.record_success()
        assert cb.state == CircuitState.OPEN
        assert cb.consecutive_failures == 2

    def test_reset_forces_closed(self, clock):
        cb = CircuitBreaker(name="cdc", failure_threshold=1, clock=clock)
        cb.record_failure()
        cb.reset()
        assert cb.state == CircuitState.CLOSED
        assert cb.consecutive_failures == 0
        assert cb.reopen_at is None
        assert cb.can_attempt() is True

    def test_time_until_reset(self, clock):
        cb = CircuitBreaker(name="cdc", failure_threshold=1, open_duration=60, clock=clock)
        assert cb.time_until_reset() is None
        cb.record_failure()
        clock.advance(20)
        assert cb.time_until_reset() == pytest.approx(40)

    def test_transition_listener(self, clock):
        seen = []
        cb = CircuitBreaker(
            name="cdc",
            failure_threshold=1,
            open_duration=60,
            clock=clock,
            on_transition=lambda name, old, new: seen.append((name, old, new)),
        )
        cb.record_failure()
        clock.advance(60)
        cb.can_attempt()
        cb.record_success()

        assert seen == [
            ("cdc", CircuitState.CLOSED, CircuitState.OPEN),
            ("cdc", CircuitState.OPEN, CircuitState.HALF_OPEN),
            ("cdc", CircuitState.HALF_OPEN, CircuitState.CLOSED),
        ]


class TestCircuitBreakerRegistry:
    """Tests for the circuit breaker registry."""

    def test_get_returns_registered_breaker(self, registry):
        cb = registry.get("cdc")
        assert cb.name == "cdc"
        assert registry.get("cdc") is cb

    def test_get_unknown_provider_raises(self, registry):
        with pytest.raises(UnknownProviderError):
            registry.get("fda")

    def test_no_dynamic_creation(self, registry):
        with pytest.raises(UnknownProviderError):
            registry.can_attempt("fda")
        assert "fda" not in registry

    def test_providers_are_independent(self, registry, clock):
        for _ in range(5):
            registry.record_failure("cdc")
        assert registry.can_attempt("cdc") is False
        assert registry.can_attempt("who") is True

    def test_reset(self, registry):
        for _ in range(5):
            registry.record_failure("cdc")
        registry.reset("cdc")
        assert registry.can_attempt("cdc") is True

    def test_snapshot(self, registry):
        registry.record_failure("who")
        snapshot = registry.snapshot()
        assert set(snapshot) == {"cdc", "disease.sh", "who", "nhanes", "hpv-impact"}
        assert snapshot["who"].consecutive_failures == 1
        assert snapshot["who"].to_dict()["state"] == "CLOSED"


class TestRetryPolicy:
    """Tests for retry policy."""

    def test_exponential_backoff(self):
        policy = RetryPolicy(RetryConfig(base_delay=1.0, backoff_multiplier=2.0))
        delays = [policy.next_delay(RetryStrategy.EXPONENTIAL_BACKOFF, attempt) for attempt in (1, 2, 3)]
        assert delays == [1.0, 2.0, 4.0]

    def test_linear_backoff(self):
        policy = RetryPolicy(RetryConfig(base_delay=1.0))
        delays = [policy.next_delay("retry_with_backoff", attempt) for attempt in (1, 2, 3)]
        assert delays == [1.0, 2.0, 3.0]

    def test_timeout_increase_is_constant(self):
        policy = RetryPolicy(RetryConfig(base_delay=0.5))
        assert policy.next_delay(RetryStrategy.RETRY_WITH_TIMEOUT_INCREASE, 3) == 0.5

    def test_wait_and_retry_is_five_times_base(self):
        policy = RetryPolicy(RetryConfig(base_delay=1.0))
        assert policy.next_delay(RetryStrategy.WAIT_AND_RETRY, 1) == 5.0
        assert policy.next_delay(RetryStrategy.WAIT_AND_RETRY, 2) == 5.0

    def test_other_strategies_use_base_delay(self):
        policy = RetryPolicy(RetryConfig(base_delay=1.0))
        assert policy.next_delay(RetryStrategy.FALLBACK_WITH_CACHE, 2) == 1.0
        assert policy.next_delay("not_a_strategy", 2) == 1.0

    def test_is_retryable(self):
        policy = RetryPolicy(RetryConfig(max_retries=3))
        assert policy.is_retryable(ErrorKind.NETWORK_ERROR, 1) is True
        assert policy.is_retryable(ErrorKind.NETWORK_ERROR, 3) is False
        assert policy.is_retryable(ErrorKind.INVALID_API_KEY, 1) is False
        assert policy.is_retryable(ErrorKind.NETWORK_ERROR, 3, max_retries=5) is True

    def test_config_merge_rejects_unknown_keys(self):
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            RetryConfig().merged(retries=4)

    def test_config_validates_values(self):
        with pytest.raises(ValueError):
            RetryConfig(max_retries=0)


class TestErrorStats:
    """Tests for error counters."""

    def test_totals_equal_sum_of_counts(self):
        stats = ErrorStats()
        stats.record_error(ErrorKind.RATE_LIMITED, "cdc")
        stats.record_error(ErrorKind.RATE_LIMITED, "cdc")
        stats.record_error(ErrorKind.TIMEOUT_ERROR, "who")

        counts = stats.error_counts()
        assert counts == {"RATE_LIMITED": {"cdc": 2}, "TIMEOUT_ERROR": {"who": 1}}
        assert stats.total == sum(c for per_kind in counts.values() for c in per_kind.values())

    def test_error_rates_use_floor_denominator(self):
        stats = ErrorStats()
        stats.record_error(ErrorKind.NETWORK_ERROR, "cdc")
        # One key: max(100, 1 + 20) = 100
        assert stats.error_rates() == {"NETWORK_ERROR": {"cdc": 1.0}}

    def test_reset_clears_counts(self):
        stats = ErrorStats()
        stats.record_error(ErrorKind.NETWORK_ERROR, "cdc")
        stats.record_transition("cdc", CircuitState.CLOSED, CircuitState.OPEN)
        stats.reset()
        assert stats.total == 0
        assert stats.transition_counts() == {}
