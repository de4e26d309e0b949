"""
Pytest configuration and fixtures.
"""

import pytest
from unittest.mock import AsyncMock
from fastapi.testclient import TestClient

from healthdata.api.app import create_app
from healthdata.config import Settings
from healthdata.resilience.circuit_breaker import CircuitBreakerRegistry
from healthdata.resilience.fallback_manager import CacheEntry, Collaborator, cache_key
from healthdata.resilience.orchestrator import build_orchestrator
from healthdata.resilience.retry_policy import RetryConfig

PROVIDERS = ["cdc", "disease.sh", "who", "nhanes", "hpv-impact"]


class FakeClock:
    """Manually advanced time source (epoch seconds)."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_sleep():
    """Records retry delays without waiting."""
    return AsyncMock(return_value=None)


@pytest.fixture
def test_settings():
    return Settings(
        providers=PROVIDERS,
        circuit_breaker_failure_threshold=5,
        circuit_breaker_timeout=60,
    )


@pytest.fixture
def retry_config():
    return RetryConfig(
        max_retries=3,
        base_delay=1.0,
        backoff_multiplier=2.0,
        enable_fallbacks=True,
        fallback_to_cached=True,
        fallback_to_placeholder=True,
    )


@pytest.fixture
def orchestrator(test_settings, retry_config, fake_sleep, clock):
    return build_orchestrator(
        test_settings,
        config=retry_config,
        sleep=fake_sleep,
        clock=clock,
    )


@pytest.fixture
def registry(clock):
    return CircuitBreakerRegistry(PROVIDERS, failure_threshold=5, open_duration=60.0, clock=clock)


@pytest.fixture
def sample_params():
    return {"disease": "hiv", "region": "US", "year": 2023}


@pytest.fixture
def sample_result():
    return {
        "success": True,
        "data": [{"disease": "hiv", "region": "US", "year": 2023, "cases": 31800, "rate": 9.6}],
        "metadata": {"source": "cdc"},
    }


@pytest.fixture
def make_collaborator():
    """Build a collaborator whose query returns (or raises) the given value."""

    def _make(result=None, error=None, cache=None):
        query = AsyncMock(return_value=result, side_effect=error)
        return Collaborator(query=query, cache=cache)

    return _make


@pytest.fixture
def cached(sample_params):
    """Build a one-entry cache for sample_params."""

    def _cached(data, timestamp):
        return {cache_key(sample_params): CacheEntry(data=data, timestamp=timestamp)}

    return _cached


@pytest.fixture
def test_app(orchestrator):
    return create_app(orchestrator)


@pytest.fixture
def test_client(test_app):
    """Create a test client for the FastAPI app."""
    return TestClient(test_app)
