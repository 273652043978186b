"""
Weekly tracker status and admin routes.

The tracker services are built in the application lifespan and stored on
``app.state.tracker``; the dependencies below read them from there.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status

from app.db.helpers import DatabaseError
from app.features.weekly_tracker.wiring import TrackerServices
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api/tracker", tags=["weekly-tracker"])


def get_tracker(request: Request) -> TrackerServices:
    tracker = getattr(request.app.state, "tracker", None)
    if tracker is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Weekly tracker services are not initialized",
        )
    return tracker


@router.get("/reset/status")
async def get_reset_status(tracker: TrackerServices = Depends(get_tracker)) -> dict:
    """Current/next weekly reset and time remaining."""
    reset_status = tracker.reset_job.get_reset_status()
    return {
        **reset_status.model_dump(mode="json"),
        "last_reconciled_boundary": tracker.reset_job.get_job_status()[
            "last_reconciled_boundary"
        ],
    }


@router.get("/refresh/stats")
async def get_refresh_stats(tracker: TrackerServices = Depends(get_tracker)) -> dict:
    return {
        **tracker.refresh_job.get_stats().to_dict(),
        "is_running": tracker.refresh_job.is_running,
        "is_scheduled": tracker.refresh_job.is_scheduled,
    }


@router.post("/refresh")
async def force_refresh(tracker: TrackerServices = Depends(get_tracker)) -> dict:
    """Run a full refresh now. Returns a skip marker if one is already running."""
    result = await tracker.refresh_job.force_refresh()
    if result.get("skipped"):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail="Activity refresh already running"
        )
    return result


@router.post("/reset/reconcile")
async def reconcile_reset(tracker: TrackerServices = Depends(get_tracker)) -> dict:
    return await tracker.reset_job.reconcile_now()


@router.get("/characters/{character_id}/progress")
async def get_character_progress(
    character_id: int, tracker: TrackerServices = Depends(get_tracker)
) -> dict:
    """Last stored activity snapshot for one character."""
    try:
        progress = await tracker.progress_repository.get_character_progress(character_id)
    except DatabaseError as e:
        logger.error("Failed to load character progress", character_id=character_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Character progress is temporarily unavailable",
        ) from e

    if progress is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No progress stored for character {character_id}",
        )
    return progress
