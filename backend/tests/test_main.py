"""
Test suite for the FastAPI application factory.

Tests cover health endpoints, request correlation, exception handlers, the
error-to-status mapping and broker selection.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import status
from fastapi.testclient import TestClient

from conftest import bearer
from delivery_tracker.core.exceptions import (
    AuthorizationError,
    ConflictError,
    DeliveryTrackerError,
    ExternalServiceError,
    InsufficientFundsError,
    NotFoundError,
    StateTransitionError,
    ValidationError,
)
from delivery_tracker.core.security import TokenError
from delivery_tracker.main import build_broker, status_code_for
from delivery_tracker.realtime.broker import InMemoryBroker
from delivery_tracker.realtime.redis_broker import RedisBroker


# ============================================================================
# Health Endpoints
# ============================================================================


class TestHealthEndpoints:
    """Test suite for health, readiness and liveness endpoints."""

    def test_health_check(self, test_client: TestClient, settings) -> None:
        response = test_client.get("/health")

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {
            "status": "healthy",
            "service": settings.app_name,
            "version": settings.app_version,
            "environment": "test",
        }

    def test_ready_with_memory_backends(self, test_client: TestClient) -> None:
        response = test_client.get("/ready")

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"status": "ready", "checks": {}}

    def test_not_ready_when_redis_is_down(self, app) -> None:
        broker = MagicMock(spec=RedisBroker)
        broker.client = MagicMock()
        broker.client.health_check = AsyncMock(return_value=False)
        app.state.broker = broker

        response = TestClient(app).get("/ready")

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        assert response.json() == {"status": "not_ready", "checks": {"redis": "unhealthy"}}

    def test_liveness(self, test_client: TestClient) -> None:
        assert test_client.get("/live").json() == {"status": "alive"}


# ============================================================================
# Middleware and Exception Handlers
# ============================================================================


class TestRequestHandling:
    """Test request correlation and error responses."""

    def test_request_id_is_echoed(self, test_client: TestClient) -> None:
        response = test_client.get("/live", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"

    def test_request_id_is_generated(self, test_client: TestClient) -> None:
        response = test_client.get("/live")
        assert response.headers["X-Request-ID"]

    def test_domain_error_shape(self, test_client: TestClient, seed_user) -> None:
        customer = seed_user()

        response = test_client.get(
            "/api/v1/orders/FGO0MISSING",
            headers={**bearer(customer), "X-Request-ID": "req-404"},
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json() == {
            "error": "NOT_FOUND",
            "message": "Order not found",
            "details": {"order_id": "FGO0MISSING"},
            "request_id": "req-404",
        }

    def test_validation_error_shape(self, test_client: TestClient) -> None:
        response = test_client.post("/api/v1/users/login", json={})

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        body = response.json()
        assert body["error"] == "VALIDATION_ERROR"
        assert {error["field"] for error in body["details"]["errors"]} == {
            "body.email",
            "body.password",
        }

    def test_unhandled_error_is_generic(self, app) -> None:
        async def explode() -> None:
            raise RuntimeError("database password is hunter2")

        app.add_api_route("/explode", explode)

        response = TestClient(app, raise_server_exceptions=False).get("/explode")

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json()["error"] == "INTERNAL_ERROR"
        assert "hunter2" not in response.text


# ============================================================================
# Application Wiring
# ============================================================================


class TestStatusCodes:
    """Test the domain error to HTTP status mapping."""

    @pytest.mark.parametrize(
        "error,expected",
        [
            (TokenError("expired"), 401),
            (ValidationError("bad"), 400),
            (StateTransitionError("bad", "placed", "placed"), 400),
            (InsufficientFundsError("broke"), 400),
            (AuthorizationError("no"), 403),
            (NotFoundError("gone"), 404),
            (ConflictError("taken"), 409),
            (ExternalServiceError("down"), 502),
            (DeliveryTrackerError("unknown"), 500),
        ],
    )
    def test_status_code_for(self, error: DeliveryTrackerError, expected: int) -> None:
        assert status_code_for(error) == expected


class TestBuildBroker:
    """Test realtime backend selection."""

    def test_memory_backend(self, settings) -> None:
        assert isinstance(build_broker(settings), InMemoryBroker)

    def test_redis_backend(self, settings) -> None:
        broker = build_broker(
            settings.model_copy(update={"realtime_backend": "redis", "subscriber_queue_size": 7})
        )

        assert isinstance(broker, RedisBroker)
        assert broker.queue_size == 7
