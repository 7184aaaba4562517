"""
RTB Asset API - Main Application Entry Point

This module initializes and configures the FastAPI application including:
- Database and Redis connections
- Background job scheduler
- CORS middleware
- API routing
- Health check endpoints
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from rtb_assets.api import api_router
from rtb_assets.core import redis as redis_state
from rtb_assets.core.config import settings
from rtb_assets.core.database import async_session_maker, close_db, init_db
from rtb_assets.core.redis import close_redis, init_redis
from rtb_assets.core.scheduler import (
    list_registered_jobs,
    start_scheduler,
    stop_scheduler,
    trigger_job_manually,
)
from rtb_assets.modules.audit.jobs import register_audit_jobs

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events including:
    - Redis connection (session tracking)
    - Database connection
    - Background job scheduler
    """
    # Startup
    print(f"Starting RTB Asset API in {settings.python_env} mode...")

    # Initialize Redis
    try:
        await init_redis()
        print("[OK] Redis connected")
    except Exception as e:
        print(f"[FAIL] Redis connection failed: {e}")
        if settings.is_production:
            raise

    # Initialize Database
    try:
        await init_db()
        print("[OK] Database connected")
    except Exception as e:
        print(f"[FAIL] Database connection failed: {e}")
        if settings.is_production:
            raise

    # Initialize Background Job Scheduler
    try:
        # Register jobs before starting the scheduler
        register_audit_jobs()

        await start_scheduler()
        print("[OK] Background scheduler started")
    except Exception as e:
        print(f"[FAIL] Background scheduler failed to start: {e}")
        if settings.is_production:
            raise

    yield  # Application runs here

    # Shutdown
    print("Shutting down RTB Asset API...")

    # Stop the scheduler first (wait for running jobs)
    await stop_scheduler()
    print("[OK] Background scheduler stopped")

    await close_redis()
    await close_db()
    print("[OK] Cleanup complete")


app = FastAPI(
    title="RTB Asset API",
    description="Rwanda TVET Board device application and asset tracking API",
    version="0.1.0",
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    lifespan=lifespan,
)

app.include_router(api_router, prefix="/api/v1")

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """Root endpoint - API welcome message."""
    return {
        "message": "Welcome to RTB Asset API",
        "status": "running",
        "environment": settings.python_env,
    }


@app.get("/health", tags=["Health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint for container orchestration."""
    return {"status": "healthy"}


@app.get("/ready", tags=["Health"])
async def readiness_check() -> dict[str, str]:
    """Readiness check: the database answers and Redis (if configured) responds."""
    checks = {"status": "ready", "database": "connected", "redis": "connected"}

    try:
        async with async_session_maker() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Readiness check: database unavailable: {e}")
        raise HTTPException(
            status_code=503, detail={"status": "not ready", "database": "error"}
        ) from e

    try:
        if redis_state.redis_client is None:
            checks["redis"] = "not initialized"
        else:
            await redis_state.redis_client.ping()
    except Exception as e:
        logger.warning(f"Readiness check: redis unavailable: {e}")
        checks["redis"] = "error"

    return checks


# ============================================
# Background Job Debug Endpoints
# ============================================
# Only mounted in development. In production, jobs run on schedule.

if settings.is_development:

    @app.get("/debug/jobs", tags=["Debug"])
    async def list_jobs():
        """List registered background jobs with their next run time."""
        return {"jobs": list_registered_jobs()}

    @app.post("/debug/jobs/{job_id}/trigger", tags=["Debug"])
    async def trigger_job(job_id: str):
        """
        Run a background job now, bypassing its schedule.

        Args:
            job_id: The ID of the job to trigger. Available jobs:
                - audit_close_stale_sessions

        Raises:
            HTTPException 400: If job_id is not found.
        """
        try:
            return await trigger_job_manually(job_id)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
