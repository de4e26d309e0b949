"""
API endpoint tests.
"""

from fastapi.testclient import TestClient

from healthdata.resilience.errors import DataUnavailable, ErrorKind


def trip(orchestrator, provider="cdc"):
    """Open a provider's circuit directly on its breaker."""
    breaker = orchestrator.registry.get(provider)
    for _ in range(breaker.failure_threshold):
        breaker.record_failure()


class TestHealthEndpoint:
    """Tests for the /health endpoint."""

    def test_health_check(self, test_client):
        """Test health endpoint reports healthy when every circuit is closed."""
        response = test_client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "version" in data
        assert "timestamp" in data
        assert set(data["circuit_breakers"]) == {"cdc", "disease.sh", "who", "nhanes", "hpv-impact"}

    def test_health_degraded_when_circuit_open(self, test_client, orchestrator):
        trip(orchestrator, "who")

        response = test_client.get("/health")

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "degraded"
        assert data["circuit_breakers"]["who"]["state"] == "OPEN"
        assert data["circuit_breakers"]["who"]["healthy"] is False


class TestStatsEndpoints:
    """Tests for the error statistics endpoints."""

    def test_stats_returns_counts(self, test_client, orchestrator):
        orchestrator.stats.record_error(ErrorKind.RATE_LIMITED, "cdc")

        response = test_client.get("/resilience/stats")

        assert response.status_code == 200
        data = response.json()
        assert data["error_counts"] == {"RATE_LIMITED": {"cdc": 1}}
        assert data["total_errors"] == 1

    def test_reset_stats(self, test_client, orchestrator):
        orchestrator.stats.record_error(ErrorKind.RATE_LIMITED, "cdc")

        response = test_client.post("/resilience/stats/reset")

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert orchestrator.stats.total == 0


class TestCircuitBreakerEndpoints:
    """Tests for circuit breaker administration."""

    def test_reset_circuit_breaker(self, test_client, orchestrator):
        trip(orchestrator, "cdc")

        response = test_client.post("/resilience/circuit-breakers/cdc/reset")

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "message": "Circuit breaker for cdc has been reset",
        }
        assert orchestrator.registry.can_attempt("cdc") is True

    def test_reset_unknown_provider_returns_404(self, test_client):
        response = test_client.post("/resilience/circuit-breakers/fda/reset")
        assert response.status_code == 404


class TestConfigEndpoint:
    """Tests for runtime configuration updates."""

    def test_partial_update(self, test_client, orchestrator):
        response = test_client.patch("/resilience/config", json={"max_retries": 5})

        assert response.status_code == 200
        data = response.json()
        assert data["config"]["max_retries"] == 5
        assert data["config"]["base_delay"] == 1.0
        assert orchestrator.config.max_retries == 5

    def test_rejects_unknown_fields(self, test_client):
        response = test_client.patch("/resilience/config", json={"retries": 5})
        assert response.status_code == 422

    def test_rejects_out_of_range_values(self, test_client):
        response = test_client.patch("/resilience/config", json={"max_retries": 0})
        assert response.status_code == 422


class TestClassifiedErrorHandler:
    """Tests for rendering terminal errors raised by host routes."""

    def test_data_unavailable_renders_structured_error(self, test_app):
        @test_app.get("/diseases/{subject}")
        async def disease_stats(subject: str):
            raise DataUnavailable(
                provider="cdc",
                original_kind=ErrorKind.TIMEOUT_ERROR,
                original_message="timeout of 30000ms exceeded",
                subject_key=subject,
            )

        client = TestClient(test_app)
        response = client.get("/diseases/hiv")

        assert response.status_code == 503
        error = response.json()["error"]
        assert error["provider"] == "cdc"
        assert error["original_type"] == "TIMEOUT_ERROR"
        assert error["subject_key"] == "hiv"


class TestPing:
    """Tests for the /ping endpoint."""

    def test_ping(self, test_client):
        response = test_client.get("/ping")
        assert response.status_code == 200
        assert response.json() == {"status": "pong"}
