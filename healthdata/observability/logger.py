"""
Structured logging for the resilience layer.

Every line carries the service name and environment. Request ids and the
provider being called travel in structlog contextvars, so retry, breaker and
fallback events can be tied back to the request and provider that caused them.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional
import structlog

from healthdata.config import settings

SERVICE_NAME = "health-data-resilience"


def add_service_info(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Stamp the service name and environment on every event."""
    event_dict.setdefault("service", SERVICE_NAME)
    event_dict.setdefault("env", settings.env)
    return event_dict


def configure_logging(
    level: Optional[str] = None,
    json_format: bool = True
) -> None:
    """
    Configure structured logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR), defaults to settings
        json_format: Render JSON in production (console output otherwise)
    """
    log_level = getattr(logging, (level or settings.log_level).upper())

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        add_service_info,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_format and settings.is_production:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        # Operators tail these in plain terminals and CI logs
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=False),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    return structlog.get_logger(name)


def bind_request_context(request_id: str, **kwargs: Any) -> None:
    """Start a fresh logging context for an incoming admin request."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, **kwargs)


def clear_context() -> None:
    """Drop everything bound for the current request."""
    structlog.contextvars.clear_contextvars()


@contextmanager
def provider_call_context(provider: str, subject_key: Optional[str] = None) -> Iterator[None]:
    """
    Bind the provider (and subject, when known) for the duration of one call.

    Keys bound by the caller, such as a request id, are left in place and
    the previous values are restored on exit.
    """
    context = {"provider": provider}
    if subject_key is not None:
        context["subject_key"] = subject_key
    with structlog.contextvars.bound_contextvars(**context):
        yield


# Configure logging on import
configure_logging()
