"""
FastAPI dependency injection functions.
"""

from typing import Optional
import uuid
from fastapi import Header, Request

from healthdata.resilience.orchestrator import ResilienceOrchestrator


def get_orchestrator(request: Request) -> ResilienceOrchestrator:
    """The orchestrator owned by the running application."""
    return request.app.state.orchestrator


def get_trace_id(
    x_trace_id: Optional[str] = Header(None, alias="X-Trace-ID"),
) -> str:
    """
    Get or generate trace ID.

    Returns:
        Trace ID string
    """
    if x_trace_id:
        return x_trace_id
    return str(uuid.uuid4())
