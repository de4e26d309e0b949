"""
Resilience orchestrator - the single entry point for protected provider calls.
Composes circuit breakers, classified retries and the fallback chain.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, Mapping, Optional, Sequence, TypeVar, Union
import structlog

from healthdata.observability import provider_call_context
from healthdata.resilience.circuit_breaker import CircuitBreakerRegistry
from healthdata.resilience.error_stats import ErrorStats
from healthdata.resilience.errors import (
    CircuitBreakerError,
    ClassifiedError,
    DataUnavailable,
    ErrorClassifier,
    ErrorKind,
    UnknownProviderError,
    create_error,
)
from healthdata.resilience.fallback_manager import (
    Collaborator,
    FallbackChainResolver,
    normalize_subject,
)
from healthdata.resilience.retry_policy import RetryConfig, RetryPolicy

logger = structlog.get_logger()

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]
Sleep = Callable[[float], Awaitable[Any]]


@dataclass
class CallOptions:
    """Per-call inputs used only when the call has to fall back."""
    subject_key: Optional[str] = None
    collaborators: Mapping[str, Collaborator] = field(default_factory=dict)
    params: Dict[str, Any] = field(default_factory=dict)


class ResilienceOrchestrator:
    """
    Protects calls to external data providers.

    Flow for one call:
    1. Reject immediately if the provider's circuit is open
    2. Run the operation up to max_retries times, sleeping between
       retryable failures according to the error's strategy
    3. Record one success or one failure on the breaker for the whole call
    4. On failure, resolve through the fallback chain

    Callers see either a (possibly fallback-annotated) result or a single
    ClassifiedError; per-attempt failures only show up in stats and logs.
    """

    def __init__(
        self,
        registry: CircuitBreakerRegistry,
        config: Optional[RetryConfig] = None,
        stats: Optional[ErrorStats] = None,
        classifier: Optional[ErrorClassifier] = None,
        resolver: Optional[FallbackChainResolver] = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the orchestrator.

        Args:
            registry: Circuit breakers for the fixed provider set
            config: Retry/fallback configuration (defaults if not provided)
            stats: Error counters; wire stats.record_transition into the
                registry to also count breaker transitions
            classifier: Maps raw errors to error kinds
            resolver: Fallback chain resolver
            sleep: Awaitable sleep used between retries
            clock: Time source for breaker bookkeeping
        """
        self._registry = registry
        self._policy = RetryPolicy(config)
        self._stats = stats or ErrorStats()
        self._classifier = classifier or ErrorClassifier()
        self._resolver = resolver or FallbackChainResolver(clock=clock)
        self._sleep = sleep
        self._clock = clock

    @property
    def config(self) -> RetryConfig:
        return self._policy.config

    @property
    def registry(self) -> CircuitBreakerRegistry:
        return self._registry

    @property
    def stats(self) -> ErrorStats:
        return self._stats

    async def handle_service_call(
        self,
        provider: str,
        operation: Operation,
        options: Optional[CallOptions] = None,
    ) -> Any:
        """
        Execute an operation against a provider with full protection.

        Args:
            provider: Registered provider name
            operation: Zero-argument callable returning an awaitable result
            options: Subject key, collaborators and params for fallbacks

        Returns:
            The operation's result, or a fallback result

        Raises:
            UnknownProviderError: If the provider was never registered
            CircuitBreakerError: If the circuit is open (operation not called)
            DataUnavailable: If retries and fallbacks are exhausted
        """
        options = options or CallOptions()
        with provider_call_context(provider, options.subject_key):
            return await self._protected_call(provider, operation, options)

    async def _protected_call(self, provider: str, operation: Operation, options: CallOptions) -> Any:
        policy = self._policy
        config = policy.config
        breaker = self._registry.get(provider)

        admission = breaker.admit(self._clock())
        if admission is None:
            circuit_state = breaker.state.value
            reset_in = breaker.time_until_reset(self._clock())
            logger.warning(
                "circuit_rejected",
                provider=provider,
                circuit_state=circuit_state,
                reset_in=reset_in,
            )
            raise CircuitBreakerError(provider, reset_in, circuit_state=circuit_state)

        last_error: Optional[Exception] = None
        last_kind = ErrorKind.API_UNAVAILABLE

        try:
            for attempt in range(1, config.max_retries + 1):
                try:
                    result = await operation()
                except Exception as e:
                    last_error = e
                    last_kind = self._classifier.classify(e)
                    self._stats.record_error(last_kind, provider)

                    if not policy.is_retryable(last_kind, attempt):
                        logger.warning(
                            "retry_stopped",
                            provider=provider,
                            attempt=attempt,
                            max_attempts=config.max_retries,
                            error=str(e),
                            error_type=last_kind.name,
                            retryable=last_kind.retryable,
                        )
                        break

                    delay = policy.next_delay(last_kind.strategy, attempt)
                    logger.info(
                        "retry_attempt",
                        provider=provider,
                        attempt=attempt,
                        max_attempts=config.max_retries,
                        delay=round(delay, 2),
                        error=str(e),
                        error_type=last_kind.name,
                        strategy=last_kind.strategy.value,
                    )
                    await self._sleep(delay)
                    continue

                breaker.record_success(self._clock())
                return result
        except asyncio.CancelledError:
            breaker.release_trial(admission)
            raise

        breaker.record_failure(self._clock(), error=str(last_error))
        failed = ClassifiedError(last_kind, str(last_error) or None, provider=provider)

        if not config.enable_fallbacks:
            logger.error(
                "service_call_failed",
                provider=provider,
                error=failed.message,
                error_type=last_kind.name,
                fallbacks_enabled=False,
            )
            raise DataUnavailable(
                provider=provider,
                original_kind=last_kind,
                original_message=failed.message,
                subject_key=normalize_subject(options.subject_key),
            ) from last_error

        try:
            return await self._resolver.resolve(
                provider,
                failed,
                options.subject_key,
                collaborators=options.collaborators,
                params=options.params,
                config=config,
            )
        except DataUnavailable as exc:
            raise exc from last_error

    def create_error(self, kind: Union[ErrorKind, str], message: Optional[str] = None) -> ClassifiedError:
        return create_error(kind, message)

    def get_error_stats(self) -> Dict[str, Any]:
        """Error counts, breaker states and the running error total."""
        return {
            "error_counts": self._stats.error_counts(),
            "circuit_breaker_states": {
                name: {
                    "state": stats.state.value,
                    "failures": stats.consecutive_failures,
                    "last_failure": stats.last_failure_at,
                }
                for name, stats in self._registry.snapshot().items()
            },
            "circuit_breaker_transitions": self._stats.transition_counts(),
            "total_errors": self._stats.total,
        }

    def reset_circuit_breaker(self, provider: str) -> Dict[str, Any]:
        """Operator escape hatch: force a provider's circuit closed."""
        try:
            self._registry.reset(provider)
        except UnknownProviderError:
            return {
                "success": False,
                "message": f"Circuit breaker for {provider} not found",
            }
        return {
            "success": True,
            "message": f"Circuit breaker for {provider} has been reset",
        }

    def reset_error_stats(self) -> Dict[str, Any]:
        self._stats.reset()
        return {"success": True, "message": "Error statistics have been reset"}

    def update_config(self, partial: Optional[Mapping[str, Any]] = None, **changes: Any) -> Dict[str, Any]:
        """
        Replace configuration fields for subsequent calls.

        In-flight calls keep the configuration they started with.

        Raises:
            ValueError: On unknown keys or invalid values
        """
        updates = {**(partial or {}), **changes}
        new_config = self.config.merged(**updates)
        self._policy = RetryPolicy(new_config)

        logger.info("resilience_config_updated", changes=updates)

        return {
            "success": True,
            "message": "Error handling configuration updated",
            "config": new_config.to_dict(),
        }

    def health_check(self) -> Dict[str, Any]:
        """Breaker health, per-key error rates and the active configuration."""
        return {
            "error_handling": "operational",
            "circuit_breakers": {
                name: {
                    "healthy": stats.healthy,
                    "state": stats.state.value,
                    "failures": stats.consecutive_failures,
                }
                for name, stats in self._registry.snapshot().items()
            },
            "error_rates": self._stats.error_rates(),
            "configuration": self.config.to_dict(),
        }


def build_orchestrator(
    settings=None,
    *,
    providers: Optional[Iterable[str]] = None,
    config: Optional[RetryConfig] = None,
    priority: Optional[Mapping[str, Sequence[str]]] = None,
    sleep: Sleep = asyncio.sleep,
    clock: Callable[[], float] = time.time,
) -> ResilienceOrchestrator:
    """
    Build an orchestrator with its registry, stats and resolver wired together.

    Args:
        settings: Application settings (loaded from the environment if omitted)
        providers: Override the provider set from settings
        config: Override the retry config derived from settings
        priority: Override the fallback priority table
        sleep: Awaitable sleep used between retries
        clock: Time source
    """
    if settings is None:
        from healthdata.config import get_settings
        settings = get_settings()

    stats = ErrorStats()
    registry = CircuitBreakerRegistry(
        settings.providers if providers is None else providers,
        failure_threshold=settings.circuit_breaker_failure_threshold,
        open_duration=settings.circuit_breaker_timeout,
        half_open_max_calls=settings.circuit_breaker_half_open_max_calls,
        clock=clock,
        on_transition=stats.record_transition,
    )
    orchestrator = ResilienceOrchestrator(
        registry,
        config=config or RetryConfig.from_settings(settings),
        stats=stats,
        resolver=FallbackChainResolver(priority=priority, clock=clock),
        sleep=sleep,
        clock=clock,
    )
    logger.info(
        "resilience_orchestrator_built",
        providers=registry.names,
        max_retries=orchestrator.config.max_retries,
        fallbacks_enabled=orchestrator.config.enable_fallbacks,
    )
    return orchestrator
