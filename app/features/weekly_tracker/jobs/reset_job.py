"""
Weekly reset reconciliation job.

Checks once per interval whether a reset boundary has passed since the
last reconciliation and, if so, triggers a full activity refresh so every
stored snapshot is recomputed against the new week. Triggering twice for
the same week is harmless: the refresh job overwrites snapshots and skips
triggers that arrive while it is already running.
"""

import asyncio
from collections.abc import Callable
from datetime import datetime

from app.features.weekly_tracker.jobs.refresh_job import ActivityRefreshJob
from app.features.weekly_tracker.services.reset_clock import (
    DEFAULT_SCHEDULE,
    ResetSchedule,
    ResetStatus,
    current_reset_boundary,
    get_reset_status,
    is_past_reset_since_last_check,
    utc_now,
)
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CHECK_INTERVAL_MINUTES = 60


class WeeklyResetJob:
    """Reconciles stored activity state after each weekly reset."""

    def __init__(
        self,
        refresh_job: ActivityRefreshJob,
        schedule: ResetSchedule = DEFAULT_SCHEDULE,
        *,
        check_interval_minutes: int = DEFAULT_CHECK_INTERVAL_MINUTES,
        last_reconciled_boundary: datetime | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        if check_interval_minutes < 1:
            raise ValueError(
                f"check_interval_minutes must be at least 1, got {check_interval_minutes}"
            )

        self.refresh_job = refresh_job
        self.schedule = schedule
        self.check_interval_minutes = check_interval_minutes
        self.last_reconciled_boundary = last_reconciled_boundary
        self.last_check_time: datetime | None = None
        self.clock = clock

        self._loop_task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None

    @property
    def is_scheduled(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    async def check_once(self, now: datetime | None = None) -> dict:
        """
        Reconcile if a reset has passed since the last reconciled boundary.

        Returns:
            Dict: Whether a reconciliation was triggered, with the refresh stats if so
        """
        now = now or self.clock()
        self.last_check_time = now

        if not is_past_reset_since_last_check(self.last_reconciled_boundary, now, self.schedule):
            logger.debug(
                "No weekly reset since last reconciliation",
                last_reconciled_boundary=self._boundary_iso(),
            )
            return {"reconciled": False, "last_reconciled_boundary": self._boundary_iso()}

        boundary = current_reset_boundary(now, self.schedule)
        logger.info(
            "Weekly reset detected, reconciling activity state",
            reset_boundary=boundary.isoformat(),
            previous_boundary=self._boundary_iso(),
        )
        return await self._reconcile(boundary)

    async def reconcile_now(self) -> dict:
        """Manual trigger: reconcile against the current boundary regardless of state."""
        boundary = current_reset_boundary(self.clock(), self.schedule)
        logger.info("Manual reset reconciliation triggered", reset_boundary=boundary.isoformat())
        return await self._reconcile(boundary)

    async def _reconcile(self, boundary: datetime) -> dict:
        stats = await self.refresh_job.run_once()

        # A skipped trigger means a run is already in flight and will see the new week
        self.last_reconciled_boundary = boundary
        return {
            "reconciled": True,
            "last_reconciled_boundary": boundary.isoformat(),
            "refresh": stats,
        }

    def _boundary_iso(self) -> str | None:
        if self.last_reconciled_boundary is None:
            return None
        return self.last_reconciled_boundary.isoformat()

    # Scheduling ---------------------------------------------------------------

    def start(self) -> None:
        """
        Begin periodic reset checks. Needs a running event loop.

        The boundary in effect at start counts as reconciled because the
        refresh job runs immediately when it starts.
        """
        if self.is_scheduled:
            logger.warning("Weekly reset scheduler is already running")
            return

        if self.last_reconciled_boundary is None:
            self.last_reconciled_boundary = current_reset_boundary(self.clock(), self.schedule)

        self._stop_event = asyncio.Event()
        self._loop_task = asyncio.create_task(self._run_loop(self._stop_event))
        logger.info(
            "Weekly reset scheduler started",
            check_interval_minutes=self.check_interval_minutes,
            last_reconciled_boundary=self._boundary_iso(),
        )

    def stop(self) -> None:
        """Stop future checks. Idempotent."""
        if self._stop_event is None or self._stop_event.is_set():
            return
        self._stop_event.set()
        logger.info("Weekly reset scheduler stopped")

    async def wait_stopped(self) -> None:
        if self._loop_task is not None:
            await self._loop_task

    async def _run_loop(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(
                    stop_event.wait(), timeout=self.check_interval_minutes * 60
                )
                break
            except TimeoutError:
                pass

            try:
                await self.check_once()
            except Exception as e:
                logger.error(
                    "Error in weekly reset scheduler", error=str(e), error_type=type(e).__name__
                )

    # Status -------------------------------------------------------------------

    def get_reset_status(self, now: datetime | None = None) -> ResetStatus:
        return get_reset_status(now or self.clock(), self.schedule)

    def get_job_status(self) -> dict:
        return {
            "job_name": "weekly_reset",
            "is_scheduled": self.is_scheduled,
            "check_interval_minutes": self.check_interval_minutes,
            "last_check_time": self.last_check_time.isoformat() if self.last_check_time else None,
            "last_reconciled_boundary": self._boundary_iso(),
        }
