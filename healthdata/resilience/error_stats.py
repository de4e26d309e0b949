"""
Error occurrence counters keyed by (error kind, provider).
"""

import threading
from collections import Counter
from typing import Dict, Tuple
import structlog

from healthdata.resilience.circuit_breaker import CircuitState
from healthdata.resilience.errors import ErrorKind

logger = structlog.get_logger()

# Baseline of successful operations assumed per recorded error key when
# estimating error rates.
ASSUMED_OPERATIONS_PER_KEY = 20
MIN_RATE_DENOMINATOR = 100


class ErrorStats:
    """
    Monotonic counters for classified failures and breaker transitions.

    Counts only grow until reset() is called by an operator.
    """

    def __init__(self):
        self._errors: Counter = Counter()
        self._transitions: Counter = Counter()
        self._lock = threading.Lock()

    def record_error(self, kind: ErrorKind, provider: str) -> int:
        with self._lock:
            self._errors[(kind, provider)] += 1
            return self._errors[(kind, provider)]

    def record_transition(self, provider: str, old: CircuitState, new: CircuitState) -> None:
        with self._lock:
            self._transitions[(provider, old, new)] += 1

    def count(self, kind: ErrorKind, provider: str) -> int:
        with self._lock:
            return self._errors[(kind, provider)]

    @property
    def total(self) -> int:
        with self._lock:
            return sum(self._errors.values())

    def error_counts(self) -> Dict[str, Dict[str, int]]:
        """Counts as {kind name: {provider: count}}."""
        with self._lock:
            items = list(self._errors.items())
        counts: Dict[str, Dict[str, int]] = {}
        for (kind, provider), count in items:
            counts.setdefault(kind.name, {})[provider] = count
        return counts

    def transition_counts(self) -> Dict[str, Dict[str, int]]:
        """Counts as {provider: {"OLD->NEW": count}}."""
        with self._lock:
            items = list(self._transitions.items())
        counts: Dict[str, Dict[str, int]] = {}
        for (provider, old, new), count in items:
            counts.setdefault(provider, {})[f"{old.value}->{new.value}"] = count
        return counts

    def error_rates(self) -> Dict[str, Dict[str, float]]:
        """
        Per-key error rate estimates in percent.

        The denominator never drops below MIN_RATE_DENOMINATOR so sparse
        traffic doesn't report alarming rates.
        """
        with self._lock:
            items: Tuple = tuple(self._errors.items())
        denominator = max(
            MIN_RATE_DENOMINATOR,
            sum(count + ASSUMED_OPERATIONS_PER_KEY for _, count in items),
        )
        rates: Dict[str, Dict[str, float]] = {}
        for (kind, provider), count in items:
            rates.setdefault(kind.name, {})[provider] = round(count / denominator * 100, 2)
        return rates

    def reset(self) -> None:
        with self._lock:
            self._errors.clear()
            self._transitions.clear()
        logger.info("error_stats_reset")
