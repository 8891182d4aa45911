"""
FastAPI application initialization
"""

import httpx
import uvicorn
from fastapi import FastAPI
from api.routes import health, stats, sync
from core.config import settings
from core.logging import setup_logging
import logging
from api.middleware import RequestContextMiddleware
from ingestion.scheduler import SyncScheduler

setup_logging()

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="PlayTraq Sync API",
    description="Multi-source game data sync engine",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(RequestContextMiddleware)

# Initialize Scheduler
scheduler = SyncScheduler()


# Include routers
app.include_router(health.router)
app.include_router(stats.router)
app.include_router(sync.router)


@app.on_event("startup")
async def startup_event():
    """Application startup event"""
    logger.info("Starting PlayTraq Sync API")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")

    app.state.http_client = httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT)

    if settings.SCHEDULER_ENABLED:
        scheduler.start()


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event"""
    logger.info("Shutting down PlayTraq Sync API")
    if settings.SCHEDULER_ENABLED:
        scheduler.stop()
    await app.state.http_client.aclose()


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "PlayTraq Sync API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "stats": "/stats/{source}",
            "sync": "/sync/{source}/{sync_type}"
        }
    }


if __name__ == "__main__":
    uvicorn.run("api.main:app", host=settings.API_HOST, port=settings.API_PORT)
