"""
Delices Couriers - Main FastAPI Application
"""
from fastapi import FastAPI
from starlette.responses import JSONResponse

from app.core.config import settings
from app.core.logging import setup_logging, get_logger
from app.core.middleware import setup_middleware, setup_exception_handlers
from app.api.routes import router as api_router
from app.db.database import engine, create_tables

# Setup logging before anything else
setup_logging(
    level="DEBUG" if settings.DEBUG else "INFO",
    json_format=not settings.DEBUG,
    app_name=settings.APP_NAME
)

logger = get_logger(__name__)


_OPENAPI_TAGS = [
    {
        "name": "Deliveries",
        "description": "Courier job board: available jobs, accept, status progression, metrics and issue reports.",
    },
    {"name": "Withdrawals", "description": "Courier withdrawal requests and their admin review."},
    {"name": "Courier Rules", "description": "Admin configuration of courier earnings and withdrawal parameters."},
    {"name": "Audit", "description": "Admin view of rule changes, withdrawal requests and reviews."},
    {"name": "Health", "description": "Liveness and readiness probes."},
]


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description=(
        "Courier side of the marketplace: delivery lifecycle, earnings computed "
        "from the courier rules, and the withdrawal ledger."
    ),
    openapi_tags=_OPENAPI_TAGS,
    openapi_url="/openapi.json",
)

# Setup middleware (CORS, correlation ID, request logging, security headers)
setup_middleware(app)
setup_exception_handlers(app)

app.include_router(api_router, prefix="/api")


@app.on_event("startup")
async def startup() -> None:
    """Initialize database tables on startup"""
    logger.info("Starting application", extra_data={"app_name": settings.APP_NAME})
    await create_tables()
    logger.info("Database tables initialized")


@app.on_event("shutdown")
async def shutdown() -> None:
    """Cleanup on shutdown"""
    logger.info("Shutting down application")
    from app.core.redis_client import close_redis
    await close_redis()
    await engine.dispose()
    logger.info("Database connections disposed")


@app.get(
    "/health",
    summary="Liveness probe",
    description="The process is up. No dependency is checked, so a DB outage does not trigger restarts.",
    tags=["Health"],
)
async def health_check() -> dict[str, str]:
    return {"status": "healthy"}


@app.get(
    "/health/ready",
    summary="Readiness probe",
    description=(
        "Checks DB, Redis, the notification gateway and the Celery broker. "
        "Returns status=healthy, or status=degraded with HTTP 503."
    ),
    responses={
        200: {
            "description": "Every dependency is reachable",
            "content": {
                "application/json": {
                    "example": {
                        "status": "healthy",
                        "db": "ok",
                        "redis": "ok",
                        "notification_gateway": "ok",
                        "celery": "ok",
                        "circuit_breakers": {"notification_gateway": "closed"},
                    }
                }
            },
        },
        503: {"description": "At least one dependency is unavailable"},
    },
    tags=["Health"],
)
async def readiness_check() -> JSONResponse:
    from app.domain.services.health_service import check_readiness

    result = await check_readiness()
    status_code = 200 if result["status"] == "healthy" else 503
    return JSONResponse(content=result, status_code=status_code)
