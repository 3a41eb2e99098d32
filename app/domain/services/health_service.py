"""
Health Service - dependency checks (DB, Redis, notification gateway, Celery broker)

Two levels:
- liveness: the process is up, no dependency checks
- readiness: every external dependency is probed
"""
from typing import Any

import httpx
import redis.asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.core.circuit_breaker import CircuitBreaker
from app.core.config import settings
from app.core.logging import get_logger
from app.core.redis_client import ping_redis
from app.db.database import AsyncSessionLocal
from app.domain.services.notification_gateway import NotificationGatewayClient

logger = get_logger(__name__)

_STATUS_HEALTHY = "healthy"
_STATUS_DEGRADED = "degraded"

_CHECK_OK = "ok"
_CHECK_SKIPPED = "skipped"

# Error strings never expose infrastructure details
_ERROR_DB = "error: db_unavailable"
_ERROR_REDIS = "error: redis_unavailable"
_ERROR_GATEWAY = "error: notification_gateway_unavailable"
_ERROR_CELERY = "error: celery_unavailable"


async def _check_db() -> str:
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
        return _CHECK_OK
    except (SQLAlchemyError, OSError) as e:
        logger.warning("DB health check failed", extra_data={"error": str(e)})
        return _ERROR_DB


async def _check_redis() -> str:
    return _CHECK_OK if await ping_redis() else _ERROR_REDIS


async def _check_notification_gateway() -> str:
    """Unconfigured gateway is reported as skipped, not as a failure"""
    client = NotificationGatewayClient()
    if not client.is_configured:
        return _CHECK_SKIPPED
    try:
        if await client.health():
            return _CHECK_OK
        logger.warning("Notification gateway health endpoint returned non-200")
    except httpx.HTTPError as e:
        logger.warning("Notification gateway health check failed", extra_data={"error": str(e)})
    return _ERROR_GATEWAY


async def _check_celery() -> str:
    """Ping the Celery broker"""
    try:
        client = aioredis.from_url(settings.CELERY_BROKER_URL, decode_responses=True)
        try:
            await client.ping()
            return _CHECK_OK
        finally:
            await client.aclose()
    except (RedisError, OSError) as e:
        logger.warning("Celery broker health check failed", extra_data={"error": str(e)})
        return _ERROR_CELERY


async def check_readiness() -> dict[str, Any]:
    """
    Probe every dependency.

    Returns ``status`` ("healthy" or "degraded"), one entry per dependency
    ("ok", "skipped" or "error: ...") and the circuit breaker states.
    """
    checks = {
        "db": await _check_db(),
        "redis": await _check_redis(),
        "notification_gateway": await _check_notification_gateway(),
        "celery": await _check_celery(),
    }

    all_ok = all(v in (_CHECK_OK, _CHECK_SKIPPED) for v in checks.values())
    overall_status = _STATUS_HEALTHY if all_ok else _STATUS_DEGRADED

    if not all_ok:
        logger.warning("Readiness check degraded", extra_data=checks)

    return {
        "status": overall_status,
        **checks,
        "circuit_breakers": CircuitBreaker.snapshot(),
    }
