"""Resilience package - circuit breakers, classified retries and fallbacks."""

from healthdata.resilience.errors import (
    ClassifiedError,
    CircuitBreakerError,
    DataUnavailable,
    ErrorClassifier,
    ErrorKind,
    RetryStrategy,
    UnknownProviderError,
    classify_error,
    create_error,
)
from healthdata.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitState,
    CircuitStats,
)
from healthdata.resilience.retry_policy import (
    RetryConfig,
    RetryPolicy,
)
from healthdata.resilience.error_stats import ErrorStats
from healthdata.resilience.fallback_manager import (
    CacheEntry,
    Collaborator,
    DEFAULT_FALLBACK_PRIORITY,
    FallbackChainResolver,
    cache_key,
)
from healthdata.resilience.orchestrator import (
    CallOptions,
    ResilienceOrchestrator,
    build_orchestrator,
)

__all__ = [
    # Errors
    "ClassifiedError",
    "CircuitBreakerError",
    "DataUnavailable",
    "ErrorClassifier",
    "ErrorKind",
    "RetryStrategy",
    "UnknownProviderError",
    "classify_error",
    "create_error",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitState",
    "CircuitStats",
    # Retry
    "RetryConfig",
    "RetryPolicy",
    # Stats
    "ErrorStats",
    # Fallback
    "CacheEntry",
    "Collaborator",
    "DEFAULT_FALLBACK_PRIORITY",
    "FallbackChainResolver",
    "cache_key",
    # Orchestrator
    "CallOptions",
    "ResilienceOrchestrator",
    "build_orchestrator",
]
