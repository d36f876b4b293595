"""Integration tests for health check endpoints."""

from unittest.mock import patch

from fastapi.testclient import TestClient


class TestHealthEndpoint:
    """Tests for /health endpoint."""

    def test_health_returns_healthy_status(self, client: TestClient) -> None:
        """Test that /health returns 200 with healthy status."""
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["version"] == "0.1.0"
        assert data["timestamp"] is not None


class TestReadinessEndpoint:
    """Tests for /health/ready endpoint."""

    def test_readiness_returns_200_when_database_reachable(self, client: TestClient) -> None:
        """Test that /health/ready reports the database check."""
        response = client.get("/health/ready")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        db_check = next(c for c in data["checks"] if c["name"] == "database")
        assert db_check["healthy"] is True
        assert db_check["latency_ms"] is not None

    def test_readiness_returns_503_when_database_unhealthy(self, client: TestClient) -> None:
        """Test that /health/ready returns 503 with the error when the database is down."""
        with patch(
            "src.api.routes.health.check_database_connection",
            return_value={"healthy": False, "error": "Connection timeout"},
        ):
            response = client.get("/health/ready")

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "unhealthy"
        assert data["checks"][0]["error"] == "Connection timeout"


class TestErrorResponseSchema:
    """Tests for error response schema compliance."""

    def test_unhandled_error_hides_details(self, client: TestClient) -> None:
        """Test that unexpected exceptions become a generic 500 without a stack trace."""
        with patch(
            "src.api.routes.health.check_database_connection",
            side_effect=Exception("secret connection string"),
        ):
            response = client.get("/health/ready")

        assert response.status_code == 500
        data = response.json()
        assert data["error"] == "internal_error"
        assert data["message"] == "An unexpected error occurred"
        assert "timestamp" in data
        assert "secret" not in response.text
