"""Integration tests for /healthz and /metrics endpoints."""

from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from backend.app.main import app


@pytest.fixture
def client() -> TestClient:
    """Create test client."""
    return TestClient(app)


class TestHealthEndpoint:
    """Test /healthz endpoint."""

    def test_health_is_always_ok(self, client: TestClient) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    @patch("backend.app.api.routes.health.check_db")
    @patch("backend.app.api.routes.health.check_redis")
    def test_healthz_returns_200_when_all_ok(
        self,
        mock_check_redis: MagicMock,
        mock_check_db: MagicMock,
        client: TestClient,
    ) -> None:
        """Test /healthz returns 200 when DB and Redis are healthy."""
        mock_check_db.return_value = (True, "ok")
        mock_check_redis.return_value = (True, "ok")

        response = client.get("/healthz")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["components"]["db"] == "ok"
        assert data["components"]["redis"] == "ok"
        assert data["components"]["llm"] == "stub"

    @patch("backend.app.api.routes.health.check_db")
    @patch("backend.app.api.routes.health.check_redis")
    def test_healthz_returns_503_when_db_fails(
        self,
        mock_check_redis: MagicMock,
        mock_check_db: MagicMock,
        client: TestClient,
    ) -> None:
        """Test /healthz returns 503 when DB check fails."""
        mock_check_db.return_value = (False, "connection refused")
        mock_check_redis.return_value = (True, "ok")

        response = client.get("/healthz")

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "degraded"
        assert data["components"]["db"] == "connection refused"
        assert data["components"]["redis"] == "ok"

    @patch("backend.app.api.routes.health.check_db")
    @patch("backend.app.api.routes.health.check_redis")
    def test_healthz_returns_503_when_redis_fails(
        self,
        mock_check_redis: MagicMock,
        mock_check_db: MagicMock,
        client: TestClient,
    ) -> None:
        """Test /healthz returns 503 when Redis check fails."""
        mock_check_db.return_value = (True, "ok")
        mock_check_redis.return_value = (False, "timeout")

        response = client.get("/healthz")

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "degraded"
        assert data["components"]["redis"] == "timeout"

    @pytest.mark.asyncio
    async def test_unconfigured_stores_report_in_process_backends(self) -> None:
        from backend.app.api.routes.health import check_db, check_redis
        from backend.app.config import Settings

        settings = Settings(_env_file=None, database_url=None, redis_url=None)

        assert await check_db(settings) == (True, "in_memory")
        assert await check_redis(settings) == (True, "not_configured")


class TestMetricsEndpoint:
    """Test /metrics endpoint."""

    def test_metrics_returns_prometheus_format(self, client: TestClient) -> None:
        """Test /metrics returns Prometheus text format."""
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "text/plain" in response.headers["content-type"]
        assert "# HELP" in response.text or "# TYPE" in response.text

    def test_metrics_includes_assistant_metrics(self, client: TestClient) -> None:
        """Test /metrics includes tool, turn, draft and lock metrics."""
        from backend.app.utils.metrics import (
            PrometheusToolMetrics,
            record_draft_transition,
            record_session_busy,
            record_turn,
        )

        metrics = PrometheusToolMetrics()
        metrics.record_latency("test_tool", "success", 100)
        metrics.inc_error("test_tool", "timeout")
        record_turn("register", "ok", 250.0)
        record_draft_transition("journey-summary", "presented")
        record_session_busy()

        response = client.get("/metrics")

        assert response.status_code == 200
        text = response.text
        assert "tool_latency_ms" in text
        assert "tool_errors_total" in text
        assert "assistant_turns_total" in text
        assert "draft_transitions_total" in text
        assert 'assistant_turn_latency_ms_count{use_case="register"}' in text
        assert "session_busy_total" in text

    def test_metrics_route_is_not_in_the_api_schema(self, client: TestClient) -> None:
        paths = client.get("/openapi.json").json()["paths"]

        assert "/metrics" not in paths
        assert "/sessions/{session_id}/turns" in paths

    def test_metrics_can_be_scraped_multiple_times(self, client: TestClient) -> None:
        response1 = client.get("/metrics")
        response2 = client.get("/metrics")

        assert response1.status_code == 200
        assert response2.status_code == 200
        assert len(response2.text) > 0


class TestRootEndpoint:
    """Test root endpoint."""

    def test_root_returns_api_info(self, client: TestClient) -> None:
        response = client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["message"] == "Crew Assistant API"
        assert data["version"] == "0.1.0"
