"""
Pydantic models for the resilience admin API.
"""

from datetime import datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field


class ErrorDetail(BaseModel):
    """Error detail information."""
    message: str
    type: str
    code: Optional[str] = None
    provider: Optional[str] = None
    subject_key: Optional[str] = None
    original_type: Optional[str] = None


class ErrorResponse(BaseModel):
    """Error response format."""
    error: ErrorDetail

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "error": {
                "message": "All data sources failed for hiv. Original error: 503 Service Unavailable",
                "type": "DATA_NOT_FOUND",
                "code": "DATA_001",
                "provider": "cdc",
                "subject_key": "hiv",
                "original_type": "API_UNAVAILABLE"
            }
        }
    })


class CircuitBreakerHealth(BaseModel):
    """Health of one provider's circuit."""
    healthy: bool
    state: str
    failures: int


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    timestamp: datetime
    error_handling: str
    circuit_breakers: Dict[str, CircuitBreakerHealth]
    error_rates: Dict[str, Dict[str, float]]
    configuration: Dict[str, Any]


class ErrorStatsResponse(BaseModel):
    """Error statistics response."""
    error_counts: Dict[str, Dict[str, int]]
    circuit_breaker_states: Dict[str, Dict[str, Any]]
    circuit_breaker_transitions: Dict[str, Dict[str, int]]
    total_errors: int


class ActionResponse(BaseModel):
    """Result of an operator action."""
    success: bool
    message: str


class ConfigUpdateRequest(BaseModel):
    """Partial update of the retry/fallback configuration."""
    model_config = ConfigDict(extra="forbid")

    max_retries: Optional[int] = Field(default=None, ge=1, le=10, description="Maximum attempts per call")
    base_delay: Optional[float] = Field(default=None, ge=0, le=60, description="Retry base delay in seconds")
    backoff_multiplier: Optional[float] = Field(default=None, ge=1, le=10, description="Exponential backoff multiplier")
    enable_fallbacks: Optional[bool] = Field(default=None, description="Walk the fallback chain on failure")
    fallback_to_cached: Optional[bool] = Field(default=None, description="Allow cached fallback results")
    fallback_to_placeholder: Optional[bool] = Field(default=None, description="Allow placeholder fallback results")


class ConfigUpdateResponse(BaseModel):
    """Configuration after an update."""
    success: bool
    message: str
    config: Dict[str, Any]
