"""
Error taxonomy and classification for outbound provider calls.
Maps raw failures onto a fixed set of error kinds, each with a retry strategy.
"""

import asyncio
import json
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union


class RetryStrategy(str, Enum):
    """How a classified failure should be handled."""
    FALLBACK_WITH_CACHE = "fallback_with_cache"
    EXPONENTIAL_BACKOFF = "exponential_backoff"
    DEGRADE_TO_PUBLIC = "degrade_to_public"
    FALLBACK_TO_ALTERNATIVE = "fallback_to_alternative"
    RETRY_WITH_BACKOFF = "retry_with_backoff"
    RETRY_WITH_TIMEOUT_INCREASE = "retry_with_timeout_increase"
    LOG_AND_FALLBACK = "log_and_fallback"
    WAIT_AND_RETRY = "wait_and_retry"


class ErrorKind(Enum):
    """Fixed table of error kinds: (code, message, strategy, retryable)."""
    API_UNAVAILABLE = ("API_001", "External API service unavailable", RetryStrategy.FALLBACK_WITH_CACHE, True)
    RATE_LIMITED = ("API_002", "API rate limit exceeded", RetryStrategy.EXPONENTIAL_BACKOFF, True)
    INVALID_API_KEY = ("API_003", "Invalid or missing API key", RetryStrategy.DEGRADE_TO_PUBLIC, False)
    DATA_NOT_FOUND = ("DATA_001", "Requested data not available", RetryStrategy.FALLBACK_TO_ALTERNATIVE, False)
    NETWORK_ERROR = ("NET_001", "Network connectivity issue", RetryStrategy.RETRY_WITH_BACKOFF, True)
    TIMEOUT_ERROR = ("NET_002", "Request timeout", RetryStrategy.RETRY_WITH_TIMEOUT_INCREASE, True)
    PARSE_ERROR = ("PARSE_001", "Failed to parse response data", RetryStrategy.LOG_AND_FALLBACK, False)
    QUOTA_EXCEEDED = ("QUOTA_001", "API quota exceeded", RetryStrategy.WAIT_AND_RETRY, True)

    def __init__(self, code: str, message: str, strategy: RetryStrategy, retryable: bool):
        self.code = code
        self.message = message
        self.strategy = strategy
        self.retryable = retryable


class ClassifiedError(Exception):
    """
    A failure tagged with its error kind.

    Collaborators that can be changed should raise this (or set an
    ``error_kind`` attribute on their own exceptions) instead of relying
    on message matching.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: Optional[str] = None,
        provider: Optional[str] = None,
        retryable: Optional[bool] = None,
    ):
        self.kind = kind
        self.code = kind.code
        self.strategy = kind.strategy
        self.retryable = kind.retryable if retryable is None else retryable
        self.provider = provider
        self.message = message or kind.message
        super().__init__(self.message)

    @property
    def error_kind(self) -> ErrorKind:
        return self.kind

    def to_dict(self) -> Dict[str, Any]:
        """Structured form suitable for display or logging."""
        return {
            "type": self.kind.name,
            "code": self.code,
            "message": self.message,
            "provider": self.provider,
            "strategy": self.strategy.value,
            "retryable": self.retryable,
        }


class CircuitBreakerError(ClassifiedError):
    """
    Raised when a provider's circuit rejected the call and it was not attempted.

    circuit_state is "OPEN" while the circuit waits out its open duration and
    "HALF_OPEN" when every trial slot is already taken.
    """

    def __init__(self, provider: str, reset_in: Optional[float] = None, circuit_state: str = "OPEN"):
        self.reset_in = reset_in
        self.circuit_state = circuit_state
        message = f"Service {provider} circuit breaker is {circuit_state}"
        if circuit_state == "HALF_OPEN":
            message += ", trial in progress"
        elif reset_in is not None:
            message += f", resets in {reset_in:.1f}s"
        super().__init__(
            ErrorKind.API_UNAVAILABLE,
            message,
            provider=provider,
            retryable=False,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["reset_in"] = self.reset_in
        data["circuit_state"] = self.circuit_state
        return data


class DataUnavailable(ClassifiedError):
    """Raised when retries and every fallback source are exhausted."""

    def __init__(
        self,
        provider: str,
        original_kind: ErrorKind,
        original_message: str,
        subject_key: str,
        sources_tried: Optional[List[str]] = None,
    ):
        self.original_kind = original_kind
        self.original_message = original_message
        self.subject_key = subject_key
        self.sources_tried = list(sources_tried or [])
        super().__init__(
            ErrorKind.DATA_NOT_FOUND,
            f"All data sources failed for {subject_key}. Original error: {original_message}",
            provider=provider,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(
            original_type=self.original_kind.name,
            original_code=self.original_kind.code,
            original_message=self.original_message,
            subject_key=self.subject_key,
            sources_tried=self.sources_tried,
        )
        return data


class UnknownProviderError(KeyError):
    """Raised when a provider name was never registered."""

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(provider)

    def __str__(self) -> str:
        return f"Unknown service: {self.provider}"


def create_error(kind: Union[ErrorKind, str], message: Optional[str] = None) -> ClassifiedError:
    """
    Build a classified error from a kind or kind name.

    Raises:
        ValueError: If the kind name is not one of the known kinds
    """
    if not isinstance(kind, ErrorKind):
        try:
            kind = ErrorKind[kind]
        except KeyError:
            raise ValueError(f"Unknown error type: {kind}") from None
    return ClassifiedError(kind, message)


@dataclass(frozen=True)
class ClassificationRule:
    """One row of the classifier table."""
    kind: ErrorKind
    pattern: Optional[re.Pattern] = None
    statuses: Tuple[int, ...] = ()
    exception_types: Tuple[type, ...] = ()

    def matches(self, error: BaseException, status: Optional[int], message: str) -> bool:
        if status is not None and status in self.statuses:
            return True
        if self.exception_types and isinstance(error, self.exception_types):
            return True
        return bool(self.pattern and self.pattern.search(message))


# Order matters: first matching rule wins.
DEFAULT_RULES: Tuple[ClassificationRule, ...] = (
    ClassificationRule(
        ErrorKind.RATE_LIMITED,
        re.compile(r"rate limit|too many requests|\b429\b"),
        statuses=(429,),
    ),
    ClassificationRule(
        ErrorKind.INVALID_API_KEY,
        re.compile(r"unauthorized|forbidden|invalid api key|\b40[13]\b"),
        statuses=(401, 403),
    ),
    ClassificationRule(
        ErrorKind.TIMEOUT_ERROR,
        re.compile(r"timeout|timed out|aborted"),
        exception_types=(TimeoutError, asyncio.TimeoutError),
    ),
    ClassificationRule(
        ErrorKind.NETWORK_ERROR,
        re.compile(r"network|econnrefused|connection refused|enotfound|getaddrinfo|name or service not known|dns"),
        exception_types=(ConnectionError,),
    ),
    ClassificationRule(
        ErrorKind.DATA_NOT_FOUND,
        re.compile(r"not found|\b404\b"),
        statuses=(404,),
    ),
    ClassificationRule(
        ErrorKind.PARSE_ERROR,
        re.compile(r"parse|json|xml"),
        exception_types=(json.JSONDecodeError,),
    ),
    ClassificationRule(
        ErrorKind.QUOTA_EXCEEDED,
        re.compile(r"quota|limit exceeded"),
    ),
    ClassificationRule(
        ErrorKind.API_UNAVAILABLE,
        re.compile(r"service unavailable|bad gateway|\b5\d\d\b"),
        statuses=tuple(range(500, 600)),
    ),
)


def _status_of(error: BaseException) -> Optional[int]:
    status = getattr(error, "status_code", None)
    if status is None:
        response = getattr(error, "response", None)
        status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def _message_of(error: BaseException) -> str:
    try:
        return str(error).lower()
    except Exception:
        return ""


class ErrorClassifier:
    """
    Best-effort adapter mapping raw errors onto ErrorKind.

    Structured tags win; otherwise the rule table is scanned in order.
    Never raises and holds no mutable state.
    """

    def __init__(
        self,
        rules: Tuple[ClassificationRule, ...] = DEFAULT_RULES,
        default: ErrorKind = ErrorKind.API_UNAVAILABLE,
    ):
        self.rules = rules
        self.default = default

    def classify(self, error: BaseException) -> ErrorKind:
        tagged = getattr(error, "error_kind", None)
        if isinstance(tagged, ErrorKind):
            return tagged

        status = _status_of(error)
        message = _message_of(error)
        for rule in self.rules:
            if rule.matches(error, status, message):
                return rule.kind
        return self.default


_default_classifier = ErrorClassifier()


def classify_error(error: BaseException) -> ErrorKind:
    """Classify with the default rule table."""
    return _default_classifier.classify(error)
