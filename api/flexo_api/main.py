"""Main FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from flexo_api.api.v1 import api_router
from flexo_api.config import settings
from flexo_api.notifications import get_notifier
from flexo_api.services.snapshot_scheduler import SnapshotScheduler
from flexo_api.services.snapshot_service import open_snapshot_service

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the snapshot scheduler and release the notifier on shutdown."""
    scheduler = None
    if settings.snapshot_scheduler_enabled:
        scheduler = SnapshotScheduler(
            open_snapshot_service,
            interval_seconds=settings.snapshot_interval_hours * 60 * 60,
            initial_delay_seconds=settings.snapshot_initial_delay_seconds,
            retention_days=settings.snapshot_retention_days,
        )
        scheduler.start()
    app.state.snapshot_scheduler = scheduler

    try:
        yield
    finally:
        if scheduler is not None:
            await scheduler.stop()
        app.state.snapshot_scheduler = None
        get_notifier().close()


app = FastAPI(
    title="Flexo Programs Service",
    description="Machine programming, realtime status and snapshots for the flexo printing fleet",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(api_router, prefix="/v1")


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    from flexo_api.database import engine
    from sqlalchemy import text
    import redis

    # Check database
    db_status = "disconnected"
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            db_status = "connected"
    except Exception as e:
        db_status = f"error: {str(e)}"

    # Check Redis (only when it carries notifications)
    redis_status = "not_used"
    if settings.notifier_backend == "redis":
        try:
            r = redis.from_url(settings.redis_url)
            r.ping()
            redis_status = "connected"
        except Exception as e:
            redis_status = f"error: {str(e)}"

    overall_status = "ok" if db_status == "connected" and redis_status in ("connected", "not_used") else "degraded"

    return {
        "status": overall_status,
        "db": db_status,
        "redis": redis_status,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "flexo_api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
    )
