# app/routes/health.py
"""
Health check endpoints with database pool and background job monitoring.
"""

import time

from fastapi import APIRouter, Request

from app.config import settings
from app.db.pool import db_health_check

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "weekly-activity-tracker"}


@router.get("/readyz")
async def readyz(request: Request):
    """
    Readiness check covering the database pool and the tracker jobs.
    """
    checks = {}
    overall_ok = True

    # 1) Database pool health check
    t0 = time.time()
    try:
        db_health = await db_health_check()

        is_healthy = db_health.get("healthy", False)
        checks["database"] = {
            "ok": is_healthy,
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }

        if "pool_stats" in db_health:
            pool_stats = db_health["pool_stats"]
            checks["database"].update(
                {
                    "pool_size": pool_stats.get("pool_size", 0),
                    "pool_available": pool_stats.get("pool_available", 0),
                    "connection_time_ms": db_health.get("connection_time_ms", 0),
                }
            )

        if not is_healthy:
            checks["database"]["error"] = db_health.get("error", "Database unhealthy")
            if "error_type" in db_health:
                checks["database"]["error_type"] = db_health["error_type"]

        overall_ok = overall_ok and is_healthy

    except Exception as e:
        checks["database"] = {
            "ok": False,
            "error": f"{type(e).__name__}: {e}",
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        overall_ok = False

    # 2) Activity refresh job, when the tracker is running in this process
    tracker = getattr(request.app.state, "tracker", None)
    if tracker is not None:
        job_health = tracker.refresh_job.health_check()
        checks["activity_refresh"] = {
            "ok": job_health["healthy"],
            "is_scheduled": job_health["is_scheduled"],
            "last_run_time": job_health["last_run_time"],
            "last_run_state": job_health["last_run_state"],
        }
        if "warning" in job_health:
            checks["activity_refresh"]["warning"] = job_health["warning"]
        overall_ok = overall_ok and job_health["healthy"]

    # 3) Configuration checks
    config_issues = []
    if not settings.DATABASE_URL:
        config_issues.append("DATABASE_URL not set")

    checks["configuration"] = {
        "ok": not config_issues,
        "issues": config_issues if config_issues else None,
        "environment": settings.environment,
        "background_jobs_enabled": settings.ENABLE_BACKGROUND_JOBS,
    }
    overall_ok = overall_ok and not config_issues

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}


@router.get("/health/database")
async def database_health():
    """Detailed database pool health information."""
    return await db_health_check()
