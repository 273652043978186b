"""
Generic background worker runner.

Reads the desired job name from CLI args or the WORKER_JOB environment
variable and runs that tracker job in this process.
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable

from app.config import settings
from app.db.pool import db_pool
from app.features.weekly_tracker.wiring import TrackerServices, build_tracker_services
from app.infrastructure.observability.logging import get_logger, setup_logging

logger = get_logger(__name__)

JobCoroutine = Callable[[], Awaitable[None]]


async def _run_with_tracker(job: Callable[[TrackerServices], Awaitable[None]]) -> None:
    """Open the pool, build the tracker, run the job, then tear everything down."""
    await db_pool.initialize()
    try:
        tracker = build_tracker_services(settings)
        try:
            await job(tracker)
        finally:
            await tracker.shutdown()
    finally:
        await db_pool.close()


async def _refresh_loop(tracker: TrackerServices) -> None:
    tracker.refresh_job.start()
    await tracker.refresh_job.wait_stopped()


async def _reset_loop(tracker: TrackerServices) -> None:
    tracker.reset_job.start()
    await tracker.reset_job.wait_stopped()


async def _refresh_once(tracker: TrackerServices) -> None:
    stats = await tracker.refresh_job.run_once()
    logger.info("Activity refresh pass finished", **stats)


async def start_activity_refresh_scheduler() -> None:
    await _run_with_tracker(_refresh_loop)


async def start_weekly_reset_scheduler() -> None:
    await _run_with_tracker(_reset_loop)


async def run_activity_refresh_once() -> None:
    await _run_with_tracker(_refresh_once)


JOB_REGISTRY: dict[str, JobCoroutine] = {
    "activity_refresh": start_activity_refresh_scheduler,
    "weekly_reset": start_weekly_reset_scheduler,
    "activity_refresh_once": run_activity_refresh_once,
}


def _resolve_job_name() -> str:
    """Pick the target job from CLI args or WORKER_JOB env variable."""
    if len(sys.argv) > 1:
        return sys.argv[1].strip().lower()
    return os.getenv("WORKER_JOB", "activity_refresh").strip().lower()


async def run_worker(job_name: str | None = None) -> None:
    """Run the requested background job."""
    name = (job_name or _resolve_job_name()).strip().lower()
    if name not in JOB_REGISTRY:
        raise ValueError(
            f"Unknown worker job '{name}'. "
            f"Available jobs: {', '.join(sorted(JOB_REGISTRY.keys()))}"
        )

    logger.info("Starting background worker", job=name)
    await JOB_REGISTRY[name]()


def main() -> None:
    """CLI entrypoint."""
    setup_logging(log_level=settings.LOG_LEVEL, json_logs=settings.LOG_JSON)
    job_name = _resolve_job_name()
    asyncio.run(run_worker(job_name))


if __name__ == "__main__":
    main()
