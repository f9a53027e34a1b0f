"""
FastAPI application entry point.

Read-mostly API over the stock catalog, open positions and signal
feedback. Optionally hosts the ingest consumers in-process.
"""
import asyncio
import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from stockservice.core.config import settings
from stockservice.core.database import check_db, close_db
from stockservice.core.logging import setup_logging
from stockservice.core.redis import close_redis, get_async_redis
from stockservice.stream_consumers.host import ConsumerHost

# Setup logging
setup_logging()
logger = logging.getLogger(__name__)

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Stock catalog, positions and signal feedback",
    debug=settings.DEBUG,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

consumer_host: Optional[ConsumerHost] = None


@app.on_event("startup")
async def startup() -> None:
    """Run on application startup."""
    # Schema is managed by Alembic
    global consumer_host
    if settings.API_RUN_CONSUMERS:
        consumer_host = ConsumerHost()
        await consumer_host.check_connectivity()
        consumer_host.start()


@app.on_event("shutdown")
async def shutdown() -> None:
    """Run on application shutdown."""
    global consumer_host
    if consumer_host is not None:
        await consumer_host.stop()
        consumer_host = None
    await close_db()
    await close_redis()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint. Reports each dependency separately."""
    status = {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "database": "ok",
        "redis": "ok",
    }

    try:
        await asyncio.wait_for(check_db(), timeout=settings.STARTUP_TIMEOUT_SECONDS)
    except Exception as e:
        logger.warning(f"Health check: database unavailable: {e!r}")
        status["database"] = "unavailable"
        status["status"] = "degraded"

    try:
        redis = await get_async_redis()
        await asyncio.wait_for(redis.ping(), timeout=settings.STARTUP_TIMEOUT_SECONDS)
    except Exception as e:
        logger.warning(f"Health check: redis unavailable: {e!r}")
        status["redis"] = "unavailable"
        status["status"] = "degraded"

    return status


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "message": f"Welcome to {settings.APP_NAME} API",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }


from stockservice.api.stocks import router as stocks_router
from stockservice.api.positions import router as positions_router
from stockservice.api.feedback import router as feedback_router
from stockservice.api.metrics import router as metrics_router

app.include_router(stocks_router, prefix="/api/v1/stocks", tags=["stocks"])
app.include_router(positions_router, prefix="/api/v1/positions", tags=["positions"])
app.include_router(feedback_router, prefix="/api/v1/feedback", tags=["feedback"])
app.include_router(metrics_router, prefix="/api/v1/metrics", tags=["metrics"])
