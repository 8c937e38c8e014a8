"""
Shipment Tracking Engine application.

Mounts the tracking routers under /v1 and creates the tracking tables on
startup.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from backend.app.core.config import settings
from backend.app.api.v1.router import router as api_v1_router
from backend.app.core.observability import ObservabilityMiddleware, configure_logging, logger
from backend.app.core import redis_client as redis_client_module
from backend.app.db.session import engine, Base
from backend.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Registered with Base.metadata for create_all
from backend.app.models import (  # noqa: F401
    trip, load, location_sample, tracking_status, tracking_event, delay_alert, notification
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Tracking tables ready, serving %s %s", settings.app_name, settings.api_version)
    yield
    await redis_client_module.close_redis()
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Location ingestion, ETA, status and delay tracking for in-progress trips",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/health", tags=["Health"])
async def health_check():
    """Liveness plus Redis reachability (recovery publishes through it)."""
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "redis": "up" if await redis_client_module.ping_redis() else "down",
    }


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": "Shipment Tracking Engine",
        "docs": "/docs",
        "tracking": f"/{settings.api_version}/tracking/trips/{{trip_id}}",
    }
