"""
API route handlers for the resilience admin surface.
"""

from datetime import datetime, timezone
import structlog

from fastapi import APIRouter, Depends, HTTPException, Response, status

from healthdata import __version__
from healthdata.api.dependencies import get_orchestrator, get_trace_id
from healthdata.api.models import (
    ActionResponse,
    ConfigUpdateRequest,
    ConfigUpdateResponse,
    ErrorResponse,
    ErrorStatsResponse,
    HealthResponse,
)
from healthdata.resilience.orchestrator import ResilienceOrchestrator

logger = structlog.get_logger()

router = APIRouter()


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={503: {"model": HealthResponse, "description": "At least one circuit is not closed"}},
    summary="Health check",
    description="Circuit breaker states, error rates and active resilience configuration.",
)
async def health_check(
    response: Response,
    orchestrator: ResilienceOrchestrator = Depends(get_orchestrator),
) -> HealthResponse:
    """Healthy only when every provider circuit is closed."""
    health = orchestrator.health_check()

    overall_status = "healthy"
    if not all(cb["healthy"] for cb in health["circuit_breakers"].values()):
        overall_status = "degraded"
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status=overall_status,
        version=__version__,
        timestamp=datetime.now(timezone.utc),
        **health,
    )


@router.get(
    "/resilience/stats",
    response_model=ErrorStatsResponse,
    summary="Error statistics",
    description="Classified error counts per provider and circuit breaker states.",
)
async def get_error_stats(
    orchestrator: ResilienceOrchestrator = Depends(get_orchestrator),
) -> ErrorStatsResponse:
    return ErrorStatsResponse(**orchestrator.get_error_stats())


@router.post(
    "/resilience/stats/reset",
    response_model=ActionResponse,
    summary="Reset error statistics",
)
async def reset_error_stats(
    orchestrator: ResilienceOrchestrator = Depends(get_orchestrator),
    trace_id: str = Depends(get_trace_id),
) -> ActionResponse:
    result = orchestrator.reset_error_stats()
    logger.info("error_stats_reset_via_api", trace_id=trace_id)
    return ActionResponse(**result)


@router.post(
    "/resilience/circuit-breakers/{provider}/reset",
    response_model=ActionResponse,
    responses={404: {"model": ErrorResponse, "description": "Unknown provider"}},
    summary="Reset circuit breaker",
    description="Force a provider's circuit closed with its counters zeroed.",
)
async def reset_circuit_breaker(
    provider: str,
    orchestrator: ResilienceOrchestrator = Depends(get_orchestrator),
    trace_id: str = Depends(get_trace_id),
) -> ActionResponse:
    result = orchestrator.reset_circuit_breaker(provider)

    if not result["success"]:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "error": {
                    "message": result["message"],
                    "type": "unknown_provider",
                    "code": "provider_not_found",
                    "provider": provider,
                }
            }
        )

    logger.info("circuit_reset_via_api", trace_id=trace_id, provider=provider)
    return ActionResponse(**result)


@router.patch(
    "/resilience/config",
    response_model=ConfigUpdateResponse,
    responses={422: {"model": ErrorResponse, "description": "Invalid configuration"}},
    summary="Update resilience configuration",
)
async def update_config(
    update: ConfigUpdateRequest,
    orchestrator: ResilienceOrchestrator = Depends(get_orchestrator),
    trace_id: str = Depends(get_trace_id),
) -> ConfigUpdateResponse:
    changes = update.model_dump(exclude_none=True)

    try:
        result = orchestrator.update_config(changes)
    except ValueError as e:
        raise HTTPException(
            status_code=422,
            detail={
                "error": {
                    "message": str(e),
                    "type": "invalid_configuration",
                    "code": "invalid_configuration",
                }
            }
        )

    logger.info("config_updated_via_api", trace_id=trace_id, changes=changes)
    return ConfigUpdateResponse(**result)
