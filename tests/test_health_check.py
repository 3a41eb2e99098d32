"""
Unit tests for the health check endpoints: liveness and readiness.
"""
import pytest
from unittest.mock import AsyncMock, patch

import httpx

from app.core.config import settings
from app.domain.services import health_service


def _patch_checks(db="ok", redis="ok", gateway="ok", celery="ok"):
    return (
        patch.object(health_service, "_check_db", new_callable=AsyncMock, return_value=db),
        patch.object(health_service, "_check_redis", new_callable=AsyncMock, return_value=redis),
        patch.object(health_service, "_check_notification_gateway", new_callable=AsyncMock, return_value=gateway),
        patch.object(health_service, "_check_celery", new_callable=AsyncMock, return_value=celery),
    )


# ============================================================================
# Liveness Probe - GET /health
# ============================================================================


class TestLivenessProbe:

    @pytest.mark.unit
    async def test_liveness_returns_healthy(self, test_client: httpx.AsyncClient) -> None:
        """Liveness never checks dependencies"""
        response = await test_client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


# ============================================================================
# Readiness Probe - GET /health/ready
# ============================================================================


class TestReadinessProbe:

    @pytest.mark.unit
    async def test_readiness_all_healthy(self, test_client: httpx.AsyncClient) -> None:
        db, redis, gateway, celery = _patch_checks()
        with db, redis, gateway, celery:
            response = await test_client.get("/health/ready")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["db"] == "ok"
        assert data["notification_gateway"] == "ok"
        assert data["circuit_breakers"] == {}

    @pytest.mark.unit
    async def test_readiness_skipped_gateway_is_healthy(self, test_client: httpx.AsyncClient) -> None:
        db, redis, gateway, celery = _patch_checks(gateway="skipped")
        with db, redis, gateway, celery:
            response = await test_client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["notification_gateway"] == "skipped"

    @pytest.mark.unit
    async def test_readiness_degraded_returns_503(self, test_client: httpx.AsyncClient) -> None:
        db, redis, gateway, celery = _patch_checks(redis="error: redis_unavailable")
        with db, redis, gateway, celery:
            response = await test_client.get("/health/ready")

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "degraded"
        assert data["redis"] == "error: redis_unavailable"


class TestIndividualChecks:

    @pytest.mark.unit
    async def test_redis_check_uses_ping(self) -> None:
        # The autouse FakeRedis answers ping
        assert await health_service._check_redis() == "ok"

    @pytest.mark.unit
    async def test_redis_check_failure(self) -> None:
        with patch.object(health_service, "ping_redis", new_callable=AsyncMock, return_value=False):
            assert await health_service._check_redis() == "error: redis_unavailable"

    @pytest.mark.unit
    async def test_gateway_skipped_when_not_configured(self) -> None:
        with patch.object(settings, "NOTIFICATION_GATEWAY_URL", ""):
            assert await health_service._check_notification_gateway() == "skipped"

    @pytest.mark.unit
    async def test_gateway_unreachable(self) -> None:
        with patch.object(settings, "NOTIFICATION_GATEWAY_URL", "https://notify.test"), \
             patch.object(
                 health_service.NotificationGatewayClient,
                 "health",
                 new_callable=AsyncMock,
                 side_effect=httpx.ConnectError("refused"),
             ):
            result = await health_service._check_notification_gateway()

        assert result == "error: notification_gateway_unavailable"

    @pytest.mark.unit
    async def test_errors_do_not_leak_details(self) -> None:
        with patch.object(health_service, "AsyncSessionLocal", side_effect=OSError("10.0.0.5:5432 refused")):
            result = await health_service._check_db()

        assert result == "error: db_unavailable"
        assert "10.0.0.5" not in result
