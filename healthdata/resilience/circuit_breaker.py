"""
Circuit breaker implementation for provider fault tolerance.
Prevents cascading failures by temporarily blocking failing providers.
"""

import threading
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional
import structlog

from healthdata.resilience.errors import UnknownProviderError

logger = structlog.get_logger()

TransitionListener = Callable[[str, "CircuitState", "CircuitState"], None]


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "CLOSED"        # Normal operation, requests pass through
    OPEN = "OPEN"            # Failing, requests are blocked
    HALF_OPEN = "HALF_OPEN"  # Testing recovery, limited requests


@dataclass
class CircuitStats:
    """Point-in-time view of a circuit breaker."""
    state: CircuitState
    consecutive_failures: int
    failure_threshold: int
    last_failure_at: Optional[float]
    reopen_at: Optional[float]
    total_successes: int
    total_failures: int
    blocked_requests: int

    @property
    def healthy(self) -> bool:
        return self.state == CircuitState.CLOSED

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        return data


@dataclass(frozen=True)
class Admission:
    """Ticket for an admitted call; only half-open admissions hold a trial slot."""
    state: CircuitState
    generation: int

    @property
    def is_trial(self) -> bool:
        return self.state == CircuitState.HALF_OPEN


class CircuitBreaker:
    """
    Circuit breaker for a single provider.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After failure_threshold consecutive failures, blocks all requests
    - HALF_OPEN: Once reopen_at is reached, admits a bounded number of trial calls

    Transitions:
    - CLOSED -> OPEN: consecutive_failures >= failure_threshold
    - OPEN -> HALF_OPEN: first attempt at or after reopen_at
    - HALF_OPEN -> CLOSED: trial call succeeds
    - HALF_OPEN -> OPEN: trial call fails (reopen_at is pushed forward)

    Admission and outcome recording each run under the breaker's own lock,
    so independent providers never contend with each other.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        open_duration: float = 60.0,
        half_open_max_calls: int = 1,
        clock: Callable[[], float] = time.time,
        on_transition: Optional[TransitionListener] = None,
    ):
        """
        Initialize circuit breaker.

        Args:
            name: Provider name
            failure_threshold: Consecutive failures before opening circuit
            open_duration: Seconds the circuit stays open before a trial
            half_open_max_calls: Max concurrent trial calls in half-open state
            clock: Time source used when callers don't pass ``now``
            on_transition: Called with (name, old_state, new_state)
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.open_duration = open_duration
        self.half_open_max_calls = half_open_max_calls
        self._clock = clock
        self._on_transition = on_transition

        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._last_failure_at: Optional[float] = None
        self._reopen_at: Optional[float] = None
        self._half_open_calls = 0
        self._generation = 0
        self._total_successes = 0
        self._total_failures = 0
        self._blocked_requests = 0
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def reopen_at(self) -> Optional[float]:
        return self._reopen_at

    @property
    def last_failure_at(self) -> Optional[float]:
        return self._last_failure_at

    def _now(self, now: Optional[float]) -> float:
        return self._clock() if now is None else now

    def _transition_to(self, new_state: CircuitState, now: float) -> None:
        """Transition to a new state. Caller holds the lock."""
        old_state = self._state
        self._state = new_state
        self._half_open_calls = 0
        # Trial tickets from an earlier half-open window no longer own a slot
        self._generation += 1

        if new_state == CircuitState.CLOSED:
            self._consecutive_failures = 0
            self._reopen_at = None
        elif new_state == CircuitState.OPEN:
            self._reopen_at = now + self.open_duration

        logger.info(
            "circuit_state_change",
            circuit=self.name,
            from_state=old_state.value,
            to_state=new_state.value,
            reopen_at=self._reopen_at,
        )
        if self._on_transition is not None and old_state != new_state:
            self._on_transition(self.name, old_state, new_state)

    def admit(self, now: Optional[float] = None) -> Optional[Admission]:
        """
        Decide whether a call may go out, reserving a trial slot if half-open.

        An open circuit becomes half-open here, on the first attempt made at
        or after reopen_at.

        Returns:
            An Admission ticket, or None if the call is rejected
        """
        now = self._now(now)
        with self._lock:
            if self._state == CircuitState.OPEN:
                if now < self._reopen_at:
                    self._blocked_requests += 1
                    return None
                self._transition_to(CircuitState.HALF_OPEN, now)

            if self._state == CircuitState.HALF_OPEN:
                if self._half_open_calls >= self.half_open_max_calls:
                    self._blocked_requests += 1
                    return None
                self._half_open_calls += 1

            return Admission(self._state, self._generation)

    def can_attempt(self, now: Optional[float] = None) -> bool:
        return self.admit(now) is not None

    def release_trial(self, admission: Admission) -> None:
        """
        Give back the trial slot held by an admission that never reported an outcome.

        Admissions made while closed, or in an earlier half-open window, hold
        no slot and are ignored.
        """
        if not admission.is_trial:
            return
        with self._lock:
            if (
                self._state == CircuitState.HALF_OPEN
                and self._generation == admission.generation
                and self._half_open_calls > 0
            ):
                self._half_open_calls -= 1

    def record_success(self, now: Optional[float] = None) -> None:
        """Record a successful call."""
        now = self._now(now)
        with self._lock:
            self._total_successes += 1
            if self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.CLOSED, now)
            elif self._state == CircuitState.CLOSED:
                self._consecutive_failures = 0
                self._last_failure_at = None

    def record_failure(self, now: Optional[float] = None, error: Optional[str] = None) -> None:
        """Record a failed call."""
        now = self._now(now)
        with self._lock:
            self._total_failures += 1
            self._consecutive_failures += 1
            self._last_failure_at = now

            if self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.OPEN, now)
            elif self._state == CircuitState.CLOSED:
                if self._consecutive_failures >= self.failure_threshold:
                    self._transition_to(CircuitState.OPEN, now)
                    logger.warning(
                        "circuit_opened",
                        circuit=self.name,
                        failure_count=self._consecutive_failures,
                        last_error=error,
                    )

    def time_until_reset(self, now: Optional[float] = None) -> Optional[float]:
        """Seconds until an open circuit admits a trial call."""
        now = self._now(now)
        with self._lock:
            if self._state != CircuitState.OPEN:
                return None
            return max(0.0, self._reopen_at - now)

    def get_stats(self) -> CircuitStats:
        with self._lock:
            return CircuitStats(
                state=self._state,
                consecutive_failures=self._consecutive_failures,
                failure_threshold=self.failure_threshold,
                last_failure_at=self._last_failure_at,
                reopen_at=self._reopen_at,
                total_successes=self._total_successes,
                total_failures=self._total_failures,
                blocked_requests=self._blocked_requests,
            )

    def reset(self) -> None:
        """Force the circuit closed with all counters zeroed."""
        with self._lock:
            if self._state != CircuitState.CLOSED:
                self._transition_to(CircuitState.CLOSED, self._clock())
            self._consecutive_failures = 0
            self._last_failure_at = None
            self._reopen_at = None
            self._half_open_calls = 0
            self._generation += 1
            self._total_successes = 0
            self._total_failures = 0
            self._blocked_requests = 0
        logger.info("circuit_reset", circuit=self.name)


class CircuitBreakerRegistry:
    """
    Owns one circuit breaker per provider.

    The provider set is fixed at construction; asking for any other name
    raises UnknownProviderError.
    """

    def __init__(
        self,
        providers: Iterable[str],
        failure_threshold: int = 5,
        open_duration: float = 60.0,
        half_open_max_calls: int = 1,
        clock: Callable[[], float] = time.time,
        on_transition: Optional[TransitionListener] = None,
    ):
        self._breakers: Dict[str, CircuitBreaker] = {
            name: CircuitBreaker(
                name,
                failure_threshold=failure_threshold,
                open_duration=open_duration,
                half_open_max_calls=half_open_max_calls,
                clock=clock,
                on_transition=on_transition,
            )
            for name in providers
        }

    @property
    def names(self) -> List[str]:
        return list(self._breakers)

    def __contains__(self, name: str) -> bool:
        return name in self._breakers

    def get(self, name: str) -> CircuitBreaker:
        try:
            return self._breakers[name]
        except KeyError:
            raise UnknownProviderError(name) from None

    def can_attempt(self, name: str, now: Optional[float] = None) -> bool:
        return self.get(name).can_attempt(now)

    def record_success(self, name: str, now: Optional[float] = None) -> None:
        self.get(name).record_success(now)

    def record_failure(self, name: str, now: Optional[float] = None, error: Optional[str] = None) -> None:
        self.get(name).record_failure(now, error)

    def reset(self, name: str) -> None:
        self.get(name).reset()

    def snapshot(self) -> Dict[str, CircuitStats]:
        """Get stats for all circuit breakers."""
        return {name: breaker.get_stats() for name, breaker in self._breakers.items()}
