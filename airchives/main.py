"""
Airchives Generation Pipeline - Main Application

FastAPI application with:
- API versioning (/api/v1/)
- Structured logging with structlog
- Prometheus metrics
- Global exception handling
- Background generation dispatch (Celery or in-process)
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from fastapi.responses import JSONResponse
import redis.asyncio as redis
from sqlalchemy import text

from airchives.core.config import settings
from airchives.core.database import async_session_maker, create_db_and_tables, engine
from airchives.core.exceptions import AirchivesError, register_exception_handlers
from airchives.core.logging import setup_logging, get_logger
from airchives.core.metrics import set_app_info, http_requests_total, http_request_duration_seconds
from airchives.api.v1 import api_v1_router
from airchives.engines.providers.factory import get_provider_selection
from airchives.modules.catalog.repositories import VirtualModelRepository
from airchives.pipeline.dispatch import LocalDispatcher, get_dispatcher


# =============================================================================
# Initialize Logging
# =============================================================================
setup_logging(
    log_level=settings.LOG_LEVEL,
    json_format=settings.LOG_FORMAT_JSON
)
logger = get_logger(__name__)


# =============================================================================
# Lifespan Handler
# =============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler - startup and shutdown."""
    startup_start = time.time()

    logger.info(
        "application_starting",
        app_name=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        executor=settings.PIPELINE_EXECUTOR
    )

    await create_db_and_tables()
    async with async_session_maker() as session:
        await VirtualModelRepository(session).seed()
    logger.info("database_initialized")

    app.state.redis = redis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True
    )

    # Provider choice is fixed for the process lifetime
    try:
        provider = get_provider_selection().name
        logger.info("inference_provider_selected", provider=provider)
    except AirchivesError as e:
        provider = "none"
        logger.warning("inference_provider_missing", error=e.message)

    set_app_info(
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        provider=provider
    )

    logger.info("application_ready", startup_time_seconds=round(time.time() - startup_start, 3))

    yield

    logger.info("application_shutting_down")
    dispatcher = get_dispatcher()
    if isinstance(dispatcher, LocalDispatcher):
        await dispatcher.drain()
    await app.state.redis.aclose()
    await engine.dispose()
    logger.info("application_shutdown_complete")


# =============================================================================
# Create FastAPI Application
# =============================================================================
app = FastAPI(
    title=settings.APP_NAME,
    description="""
    Garment intake and virtual model photo generation.

    - **Garment Intake**: detection and segmentation run concurrently per upload
    - **Generation**: one synthesis per pose (front, side_45, back) through the
      configured provider, executed in the background
    - **Status**: pending -> processing -> completed | failed, with coarse progress
    - **Observability**: structured logging, Prometheus metrics

    All endpoints are versioned under `/api/v1/`.
    """,
    version=settings.APP_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)


# =============================================================================
# Middleware
# =============================================================================

cors_origins = settings.CORS_ORIGINS.split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_request_timing(request: Request, call_next):
    """Track request timing for metrics."""
    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    # Route template keeps label cardinality bounded
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)

    http_request_duration_seconds.labels(
        method=request.method,
        endpoint=endpoint
    ).observe(duration)

    http_requests_total.labels(
        method=request.method,
        endpoint=endpoint,
        status=response.status_code
    ).inc()

    response.headers["X-Process-Time"] = str(duration)
    return response


# =============================================================================
# Register Exception Handlers
# =============================================================================
register_exception_handlers(app)


# =============================================================================
# Include API Routers
# =============================================================================
app.include_router(api_v1_router)


# =============================================================================
# Static Files
# =============================================================================
app.mount("/static/storage", StaticFiles(directory=settings.LOCAL_STORAGE_PATH), name="storage")


# =============================================================================
# Root Endpoints
# =============================================================================

@app.get("/", tags=["root"])
async def root():
    """Root endpoint with API information."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "docs": "/api/docs",
        "api_v1": "/api/v1",
        "metrics": "/api/v1/metrics"
    }


@app.get("/health", tags=["health"])
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION
    }


@app.get("/ready", tags=["health"])
async def ready(request: Request):
    """Readiness check - verifies dependencies are available."""
    checks = {
        "database": False,
        "redis": False,
        "provider": False
    }

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception as e:
        logger.warning("readiness_database_failed", error=str(e))

    # Redis is only required when generations go through Celery
    if settings.PIPELINE_EXECUTOR.lower() == "local":
        checks["redis"] = True
    else:
        try:
            await request.app.state.redis.ping()
            checks["redis"] = True
        except Exception as e:
            logger.warning("readiness_redis_failed", error=str(e))

    try:
        get_provider_selection()
        checks["provider"] = True
    except AirchivesError:
        pass

    all_ready = all(checks.values())
    return JSONResponse(
        status_code=200 if all_ready else 503,
        content={"ready": all_ready, "checks": checks}
    )


# =============================================================================
# Development Server
# =============================================================================
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "airchives.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
