"""
Application configuration using Pydantic Settings.
Loads configuration from environment variables (.env file).
"""

from functools import lru_cache
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


DEFAULT_PROVIDERS = ["cdc", "disease.sh", "who", "nhanes", "hpv-impact"]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="development", description="Environment (development/staging/production)")
    debug: bool = Field(default=True, description="Debug mode")

    # FastAPI
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")

    # Providers protected by a circuit breaker
    providers: List[str] = Field(
        default_factory=lambda: list(DEFAULT_PROVIDERS),
        description="Provider names that get a circuit breaker at startup"
    )

    # Fallbacks (ENABLE_DATA_FALLBACKS, FALLBACK_TO_CACHED_DATA, FALLBACK_TO_PLACEHOLDER_DATA)
    enable_data_fallbacks: bool = Field(default=False, description="Walk the fallback chain when a provider fails")
    fallback_to_cached_data: bool = Field(default=False, description="Allow cached results as a fallback")
    fallback_to_placeholder_data: bool = Field(default=False, description="Allow placeholder results as a last resort")

    # Circuit Breaker
    circuit_breaker_failure_threshold: int = Field(default=5, ge=1, description="Circuit breaker failure threshold")
    circuit_breaker_timeout: float = Field(default=60.0, gt=0, description="Seconds a tripped circuit stays open")
    circuit_breaker_half_open_max_calls: int = Field(default=1, ge=1, description="Concurrent trial calls while half-open")

    # Retry
    max_retries: int = Field(default=3, ge=1, description="Maximum attempts per call")
    retry_base_delay: float = Field(default=1.0, ge=0, description="Retry base delay in seconds")
    retry_backoff_multiplier: float = Field(default=2.0, ge=1, description="Exponential backoff multiplier")

    # Logging
    log_level: str = Field(default="INFO", description="Log level")

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.env.lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export
settings = get_settings()
