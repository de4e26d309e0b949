"""API package - FastAPI admin surface for the resilience layer."""

from healthdata.api.app import app, create_app
from healthdata.api.models import (
    ConfigUpdateRequest,
    ErrorResponse,
    ErrorStatsResponse,
    HealthResponse,
)

__all__ = [
    "app",
    "create_app",
    "ConfigUpdateRequest",
    "ErrorResponse",
    "ErrorStatsResponse",
    "HealthResponse",
]
