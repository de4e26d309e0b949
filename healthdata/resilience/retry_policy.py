"""
Retry timing and eligibility per error strategy.
Delays are computed with tenacity's wait strategies.
"""

from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Dict, Optional, Union

from tenacity import (
    RetryCallState,
    wait_exponential,
    wait_fixed,
    wait_incrementing,
)
from tenacity.wait import wait_base

from healthdata.resilience.errors import ErrorKind, RetryStrategy

QUOTA_WAIT_FACTOR = 5


@dataclass(frozen=True)
class RetryConfig:
    """Process-wide retry and fallback configuration."""
    max_retries: int = 3
    base_delay: float = 1.0
    backoff_multiplier: float = 2.0
    enable_fallbacks: bool = False
    fallback_to_cached: bool = False
    fallback_to_placeholder: bool = False

    def __post_init__(self):
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must not be negative")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be at least 1")

    @classmethod
    def from_settings(cls, settings) -> "RetryConfig":
        return cls(
            max_retries=settings.max_retries,
            base_delay=settings.retry_base_delay,
            backoff_multiplier=settings.retry_backoff_multiplier,
            enable_fallbacks=settings.enable_data_fallbacks,
            fallback_to_cached=settings.fallback_to_cached_data,
            fallback_to_placeholder=settings.fallback_to_placeholder_data,
        )

    def merged(self, **changes: Any) -> "RetryConfig":
        """
        Return a copy with the given fields replaced.

        Raises:
            ValueError: On unknown field names or out-of-range values
        """
        known = {f.name for f in fields(self)}
        unknown = sorted(set(changes) - known)
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(unknown)}")
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class RetryPolicy:
    """
    Deterministic retry schedule bound to one RetryConfig.

    Strategy -> delay (attempt is 1-based):
    - exponential_backoff: base * multiplier ** (attempt - 1)
    - retry_with_backoff: base * attempt
    - retry_with_timeout_increase: base (callers widen their own timeout)
    - wait_and_retry: base * 5
    - anything else: base
    """

    def __init__(self, config: Optional[RetryConfig] = None):
        self.config = config or RetryConfig()
        base = self.config.base_delay
        self._waits: Dict[RetryStrategy, wait_base] = {
            RetryStrategy.EXPONENTIAL_BACKOFF: wait_exponential(
                multiplier=base, exp_base=self.config.backoff_multiplier
            ),
            RetryStrategy.RETRY_WITH_BACKOFF: wait_incrementing(start=base, increment=base),
            RetryStrategy.RETRY_WITH_TIMEOUT_INCREASE: wait_fixed(base),
            RetryStrategy.WAIT_AND_RETRY: wait_fixed(base * QUOTA_WAIT_FACTOR),
        }
        self._default_wait = wait_fixed(base)

    def next_delay(self, strategy: Union[RetryStrategy, str], attempt: int) -> float:
        """
        Seconds to wait after the given failed attempt.

        Args:
            strategy: Strategy of the classified error (unknown values use base_delay)
            attempt: Attempt number that just failed (1-based)
        """
        try:
            strategy = RetryStrategy(strategy)
        except ValueError:
            wait = self._default_wait
        else:
            wait = self._waits.get(strategy, self._default_wait)

        retry_state = RetryCallState(retry_object=None, fn=None, args=(), kwargs={})
        retry_state.attempt_number = attempt
        return float(wait(retry_state))

    def is_retryable(self, kind: ErrorKind, attempt: int, max_retries: Optional[int] = None) -> bool:
        """Whether another attempt should follow the given failed attempt."""
        limit = self.config.max_retries if max_retries is None else max_retries
        return kind.retryable and attempt < limit
