"""
Effect Studio - Main Application

FastAPI application with:
- API versioning (/api/v1/)
- Structured logging with structlog
- Prometheus metrics
- Global exception handling
- Background sweep of expired images and jobs
"""

import time
import asyncio
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from effect_studio.core.config import Settings, settings
from effect_studio.core.logging import setup_logging, get_logger
from effect_studio.core.exceptions import register_exception_handlers
from effect_studio.core.metrics import (
    set_app_info,
    record_sweep,
    http_requests_total,
    http_request_duration_seconds,
)
from effect_studio.core.storage import IStorage
from effect_studio.api.v1 import api_v1_router
from effect_studio.api.dependencies import build_services, Services
from effect_studio.pipeline.generation import GenerativeTransformer


# =============================================================================
# Initialize Logging
# =============================================================================
setup_logging(
    log_level=settings.LOG_LEVEL,
    json_format=settings.LOG_FORMAT_JSON,
    app_version=settings.APP_VERSION
)
logger = get_logger(__name__)


# =============================================================================
# Background Sweep
# =============================================================================

async def sweep_once(services: Services):
    """Remove expired images and evict expired terminal jobs."""
    images_removed = await services.image_store.sweep_expired()
    jobs_evicted = services.jobs.evict_expired()
    record_sweep("image", images_removed)
    record_sweep("job", jobs_evicted)
    return images_removed, jobs_evicted


async def sweep_loop(services: Services, interval_seconds: int):
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await sweep_once(services)
        except Exception as e:
            logger.error("sweep_failed", error=str(e), error_type=type(e).__name__)


# =============================================================================
# Lifespan Handler
# =============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler - startup and shutdown."""
    startup_start = time.time()
    config: Settings = app.state.config

    logger.info(
        "application_starting",
        app_name=config.APP_NAME,
        version=config.APP_VERSION,
        environment=config.ENVIRONMENT
    )

    services = build_services(
        config,
        transformer=app.state.transformer_override,
        storage=app.state.storage_override
    )
    app.state.services = services

    set_app_info(
        version=config.APP_VERSION,
        environment=config.ENVIRONMENT
    )

    sweeper = None
    if config.SWEEP_INTERVAL_SECONDS > 0:
        sweeper = asyncio.create_task(sweep_loop(services, config.SWEEP_INTERVAL_SECONDS))

    logger.info(
        "application_ready",
        startup_time_seconds=time.time() - startup_start,
        generation_enabled=services.transformer is not None,
        effects=len(services.registry)
    )

    yield

    # Shutdown
    logger.info("application_shutting_down")
    if sweeper is not None:
        sweeper.cancel()
        await asyncio.gather(sweeper, return_exceptions=True)
    await services.jobs.shutdown()
    if services.transformer is not None:
        await services.transformer.aclose()
    logger.info("application_shutdown_complete")


# =============================================================================
# Create FastAPI Application
# =============================================================================

def create_app(
    config: Optional[Settings] = None,
    transformer: Optional[GenerativeTransformer] = None,
    storage: Optional[IStorage] = None
) -> FastAPI:
    """
    Build the application.

    transformer and storage replace the configured Gemini client and blob
    backend; tests use them to run without network or disk.
    """
    config = config or settings

    app = FastAPI(
        title=config.APP_NAME,
        description="""
        Asynchronous image effect processing.

        1. **Upload** an image: `POST /api/v1/images/upload`
        2. **Pick** an effect: `GET /api/v1/effects`
        3. **Submit** a job: `POST /api/v1/effects/apply` (returns 202 + job id)
        4. **Poll** until terminal: `GET /api/v1/status/{job_id}`
        5. **Fetch** the result: `GET /api/v1/images/file/{image_id}`

        Results come from the generative model when it returns an image and
        from deterministic fallback filters otherwise.
        """,
        version=config.APP_VERSION,
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json"
    )
    app.state.config = config
    app.state.transformer_override = transformer
    app.state.storage_override = storage

    # =========================================================================
    # Middleware
    # =========================================================================

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS.split(","),
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

    register_exception_handlers(app)
    app.include_router(api_v1_router)

    # =========================================================================
    # Root Endpoints
    # =========================================================================

    @app.get("/", tags=["root"])
    async def root():
        """Root endpoint with API information."""
        return {
            "name": config.APP_NAME,
            "version": config.APP_VERSION,
            "environment": config.ENVIRONMENT,
            "docs": "/api/docs",
            "api_v1": "/api/v1",
            "metrics": "/api/v1/metrics"
        }

    @app.get("/health", tags=["health"])
    async def health():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": config.APP_VERSION
        }

    @app.get("/ready", tags=["health"])
    async def ready(request: Request):
        """Readiness check - services built and storage reachable."""
        services: Optional[Services] = getattr(request.app.state, "services", None)
        checks = {
            "services": services is not None,
            "storage": False,
            "generation": services is not None and services.transformer is not None,
        }

        if services is not None:
            try:
                await services.storage.exists("__ready__")
                checks["storage"] = True
            except OSError as e:
                logger.warning("storage_not_ready", error=str(e))

        # Generation is optional; the fallback covers its absence
        all_ready = checks["services"] and checks["storage"]

        return JSONResponse(
            status_code=200 if all_ready else 503,
            content={
                "ready": all_ready,
                "checks": checks,
                "fallback_enabled": config.FALLBACK_ENABLED,
                "active_jobs": services.jobs.active_count if services else 0,
            }
        )

    return app


app = create_app()


# =============================================================================
# Development Server
# =============================================================================
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "effect_studio.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
