"""Observability package - structured logging."""

from healthdata.observability.logger import (
    SERVICE_NAME,
    bind_request_context,
    clear_context,
    configure_logging,
    get_logger,
    provider_call_context,
)

__all__ = [
    "SERVICE_NAME",
    "bind_request_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    "provider_call_context",
]
