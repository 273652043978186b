"""
Activity refresh job.

Periodically re-fetches every user's characters from the profile API,
recomputes their weekly activity state and stores the snapshots. Users are
processed in fixed-size batches (concurrently within a batch, sequentially
across batches with a short pause) and every failure is isolated to the
user or character it belongs to.
"""

import asyncio
import copy
import time
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Protocol

from app.features.weekly_tracker.domain.models import (
    ActivityCompletionResult,
    CategoryFetchResult,
    CharacterRef,
    DataSource,
    UserAccount,
)
from app.features.weekly_tracker.services.analyzer import WeeklyActivityAnalyzer
from app.features.weekly_tracker.services.reset_clock import utc_now
from app.infrastructure.observability.logging import get_logger
from app.utils.async_helpers import chunked, settle_all

logger = get_logger(__name__)

# Job defaults
DEFAULT_INTERVAL_MINUTES = 30
DEFAULT_BATCH_SIZE = 5
DEFAULT_BATCH_DELAY_SECONDS = 1.0
DEFAULT_CHARACTER_TIMEOUT_SECONDS = 60.0
MAX_RECORDED_ERRORS = 50


class ActivityDataSource(Protocol):
    async def fetch_characters(self, access_credential: str) -> list[CharacterRef]: ...

    async def fetch_category_data(
        self, source: DataSource, realm_slug: str, character_name: str, access_credential: str
    ) -> Any: ...


class UserSource(Protocol):
    async def fetch_users(self) -> list[UserAccount]: ...


class ProgressStore(Protocol):
    async def persist_activity_results(
        self,
        character_id: int,
        character: CharacterRef,
        results: list[ActivityCompletionResult],
        timestamp: datetime,
    ) -> None: ...


class ActivityRefreshJobError(Exception):
    """Raised when a refresh run cannot start processing at all."""

    def __init__(self, message: str, operation: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class RefreshState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class RefreshStats:
    """Counters for one refresh run plus the schedule bookkeeping around it."""

    def __init__(self):
        self.reset()
        self.last_run_time: datetime | None = None
        self.next_run_time: datetime | None = None
        self.average_duration_seconds = 0.0
        self.completed_runs = 0
        self.last_run_state: RefreshState | None = None

    def reset(self):
        """Reset all counters for a new run."""
        self.start_time = utc_now()
        self.total_users = 0
        self.total_characters = 0
        self.successful_refreshes = 0
        self.failed_refreshes = 0
        self.skipped_users = 0
        self.duration_seconds = 0.0
        self.job_error: str | None = None
        self.errors: list[dict] = []

    def record_success(self, user_id: str, character: CharacterRef, duration_ms: float):
        self.successful_refreshes += 1

        logger.debug(
            "Character refresh successful",
            user_id=user_id,
            character=character.label,
            duration_ms=round(duration_ms, 2),
            job_run="activity_refresh",
        )

    def record_failure(self, user_id: str, error: str, character: CharacterRef | None = None):
        self.failed_refreshes += 1

        if len(self.errors) < MAX_RECORDED_ERRORS:
            self.errors.append(
                {
                    "user_id": user_id,
                    "character": character.label if character else None,
                    "error": error,
                    "timestamp": utc_now().isoformat(),
                }
            )

        logger.warning(
            "Activity refresh failed",
            user_id=user_id,
            character=character.label if character else None,
            error=error,
            job_run="activity_refresh",
        )

    def record_skipped_user(self, user_id: str, reason: str):
        self.skipped_users += 1
        logger.info("Skipping user", user_id=user_id, reason=reason, job_run="activity_refresh")

    def finalize(self):
        self.duration_seconds = (utc_now() - self.start_time).total_seconds()

    def snapshot(self) -> "RefreshStats":
        return copy.deepcopy(self)

    def to_dict(self) -> dict:
        processed = self.successful_refreshes + self.failed_refreshes
        return {
            "job_run": "activity_refresh",
            "start_time": self.start_time.isoformat(),
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "next_run_time": self.next_run_time.isoformat() if self.next_run_time else None,
            "last_run_state": self.last_run_state.value if self.last_run_state else None,
            "duration_seconds": round(self.duration_seconds, 2),
            "average_duration_seconds": round(self.average_duration_seconds, 2),
            "completed_runs": self.completed_runs,
            "total_users": self.total_users,
            "total_characters": self.total_characters,
            "successful_refreshes": self.successful_refreshes,
            "failed_refreshes": self.failed_refreshes,
            "skipped_users": self.skipped_users,
            "success_rate_percent": round(
                (self.successful_refreshes / processed * 100) if processed > 0 else 0, 2
            ),
            "job_error": self.job_error,
            "errors_count": len(self.errors),
        }


class ActivityRefreshJob:
    """
    Recurring and on-demand refresh of every user's weekly activity state.

    Only one run executes at a time; a trigger arriving during a run is
    skipped. Stats are published once per run, when the run finishes.
    """

    def __init__(
        self,
        analyzer: WeeklyActivityAnalyzer,
        api_client: ActivityDataSource,
        user_repository: UserSource,
        progress_repository: ProgressStore,
        *,
        interval_minutes: int = DEFAULT_INTERVAL_MINUTES,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_delay_seconds: float = DEFAULT_BATCH_DELAY_SECONDS,
        character_timeout_seconds: float = DEFAULT_CHARACTER_TIMEOUT_SECONDS,
        sources: Sequence[DataSource] = tuple(DataSource),
        clock: Callable[[], datetime] = utc_now,
    ):
        self.analyzer = analyzer
        self.api_client = api_client
        self.user_repository = user_repository
        self.progress_repository = progress_repository
        self.interval_minutes = interval_minutes
        self.batch_size = batch_size
        self.batch_delay_seconds = batch_delay_seconds
        self.character_timeout_seconds = character_timeout_seconds
        self.sources = tuple(sources)
        self.clock = clock

        self.state = RefreshState.IDLE
        self._stats = RefreshStats()
        self._loop_task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None
        self._validate_config()

    def _validate_config(self) -> None:
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {self.batch_size}")
        if self.interval_minutes < 1:
            raise ValueError(f"interval_minutes must be at least 1, got {self.interval_minutes}")
        if self.interval_minutes < 5:
            logger.warning(
                "Activity refresh interval is very short", interval_minutes=self.interval_minutes
            )

        logger.info(
            "Activity refresh job configured",
            interval_minutes=self.interval_minutes,
            batch_size=self.batch_size,
            batch_delay_seconds=self.batch_delay_seconds,
            sources=[source.value for source in self.sources],
        )

    @property
    def is_running(self) -> bool:
        return self.state is RefreshState.RUNNING

    @property
    def is_scheduled(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    # Runs ---------------------------------------------------------------------

    async def run_once(self) -> dict:
        """
        Perform one full refresh pass over every user.

        Returns:
            Dict: The published stats of this run, or a skip marker when a run
            is already in progress
        """
        if self.is_running:
            logger.warning("Activity refresh already running, skipping this trigger")
            return {"skipped": True, "reason": "already_running"}

        # Set before the first await so a concurrent trigger sees it
        self.state = RefreshState.RUNNING
        run_stats = RefreshStats()
        outcome = RefreshState.FAILED

        try:
            logger.info("Starting activity refresh", batch_size=self.batch_size)

            users = await self._get_users()
            run_stats.total_users = len(users)

            if users:
                await self._process_users_in_batches(users, run_stats)
            else:
                logger.info("No users found for refresh")

            outcome = RefreshState.COMPLETED

        except ActivityRefreshJobError as e:
            run_stats.job_error = str(e)
            logger.error("Activity refresh failed", error=str(e), operation=e.operation)

        finally:
            run_stats.finalize()
            self._publish(run_stats, outcome)
            self.state = RefreshState.IDLE

        stats = self._stats.to_dict()
        logger.info("Activity refresh finished", **stats)
        return stats

    async def force_refresh(self) -> dict:
        """Manual trigger outside the timer; same pipeline and same single-run rule."""
        logger.info("Force refresh triggered")
        return await self.run_once()

    def _publish(self, run_stats: RefreshStats, outcome: RefreshState) -> None:
        """Swap in the finished run's stats; a failed run keeps the last good counters."""
        previous = self._stats
        finished_at = self.clock()

        if outcome is RefreshState.COMPLETED:
            published = run_stats
            published.completed_runs = previous.completed_runs + 1
            published.average_duration_seconds = (
                previous.average_duration_seconds * previous.completed_runs
                + run_stats.duration_seconds
            ) / published.completed_runs
        else:
            published = previous.snapshot()
            published.job_error = run_stats.job_error

        published.last_run_time = finished_at
        published.last_run_state = outcome
        # The scheduler loop owns the next run time
        published.next_run_time = previous.next_run_time
        self._stats = published

    async def _get_users(self) -> list[UserAccount]:
        try:
            return await self.user_repository.fetch_users()
        except Exception as e:
            raise ActivityRefreshJobError(
                f"Failed to list users: {e}", operation="get_users"
            ) from e

    async def _process_users_in_batches(self, users: list[UserAccount], stats: RefreshStats):
        batches = chunked(users, self.batch_size)

        logger.info(
            "Processing users in batches",
            total_users=len(users),
            batch_count=len(batches),
            batch_size=self.batch_size,
        )

        for batch_num, batch_users in enumerate(batches, 1):
            logger.debug(
                "Processing batch",
                batch_number=batch_num,
                batch_size=len(batch_users),
                total_batches=len(batches),
            )

            settled = await settle_all(self._process_user(user, stats) for user in batch_users)
            for user, outcome in zip(batch_users, settled, strict=True):
                if not outcome.ok:
                    stats.record_failure(user.user_id, f"Unexpected error: {outcome.error}")

            # Backpressure against the API between batches
            if batch_num < len(batches):
                await asyncio.sleep(self.batch_delay_seconds)

    async def _process_user(self, user: UserAccount, stats: RefreshStats):
        if not user.has_credential():
            stats.record_skipped_user(user.user_id, "no valid credential")
            return

        try:
            characters = await self.api_client.fetch_characters(user.access_credential)
        except Exception as e:
            stats.record_failure(user.user_id, f"Roster fetch failed: {e}")
            return

        if not characters:
            logger.info("No characters found for user", user_id=user.user_id)
            return

        stats.total_characters += len(characters)

        for character in characters:
            await self._refresh_character(user, character, stats)

    async def _refresh_character(
        self, user: UserAccount, character: CharacterRef, stats: RefreshStats
    ):
        start_time = time.time()

        try:
            await asyncio.wait_for(
                self._perform_character_refresh(user, character),
                timeout=self.character_timeout_seconds,
            )
            stats.record_success(user.user_id, character, (time.time() - start_time) * 1000)

        except TimeoutError:
            stats.record_failure(
                user.user_id,
                f"Character refresh timed out after {self.character_timeout_seconds}s",
                character,
            )

        except Exception as e:
            stats.record_failure(user.user_id, f"{type(e).__name__}: {e}", character)

    async def _perform_character_refresh(self, user: UserAccount, character: CharacterRef):
        data = await self.fetch_activity_data(character, user.access_credential)

        now = self.clock()
        results = self.analyzer.analyze(character.character_id, data, now)
        await self.progress_repository.persist_activity_results(
            character.character_id, character, results, now
        )

        completed = sum(1 for result in results if result.completed)
        if completed:
            logger.info(
                "Character activities refreshed",
                character=character.label,
                completed=completed,
                total=len(results),
            )

    async def fetch_activity_data(
        self, character: CharacterRef, access_credential: str
    ) -> dict[DataSource, CategoryFetchResult]:
        """
        Fetch every data source for one character concurrently.

        A failing source becomes an error entry; it never cancels or fails
        the other sources.
        """
        settled = await settle_all(
            self.api_client.fetch_category_data(
                source, character.realm_slug, character.name, access_credential
            )
            for source in self.sources
        )

        data: dict[DataSource, CategoryFetchResult] = {}
        for source, outcome in zip(self.sources, settled, strict=True):
            if outcome.ok:
                data[source] = CategoryFetchResult.ok(outcome.value)
            else:
                logger.warning(
                    "Failed to fetch character data",
                    source=source.value,
                    character=character.label,
                    error=str(outcome.error),
                )
                data[source] = CategoryFetchResult.failed(str(outcome.error))
        return data

    # Scheduling ---------------------------------------------------------------

    def start(self, interval_minutes: int | None = None) -> None:
        """Run once immediately, then every ``interval_minutes``. Needs a running event loop."""
        if self.is_scheduled:
            logger.warning("Activity refresh scheduler is already running")
            return

        if interval_minutes is not None:
            self.interval_minutes = interval_minutes
            self._validate_config()

        self._stop_event = asyncio.Event()
        self._loop_task = asyncio.create_task(self._run_loop(self._stop_event))
        logger.info("Activity refresh scheduler started", interval_minutes=self.interval_minutes)

    def stop(self) -> None:
        """Cancel future runs. An in-flight run still finishes. Idempotent."""
        if self._stop_event is None or self._stop_event.is_set():
            return
        self._stop_event.set()
        self._stats.next_run_time = None
        logger.info("Activity refresh scheduler stopped")

    async def wait_stopped(self) -> None:
        """Wait for the scheduler loop (and any in-flight run) to exit after stop()."""
        if self._loop_task is not None:
            await self._loop_task

    async def _run_loop(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                await self.run_once()
            except Exception as e:
                logger.error(
                    "Error in activity refresh scheduler", error=str(e), error_type=type(e).__name__
                )

            if stop_event.is_set():
                break
            self._stats.next_run_time = self.clock() + timedelta(minutes=self.interval_minutes)

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval_minutes * 60)
            except TimeoutError:
                continue

    # Status -------------------------------------------------------------------

    def get_stats(self) -> RefreshStats:
        """Copy of the last published stats; never the live instance."""
        return self._stats.snapshot()

    def get_job_status(self) -> dict:
        return {
            "job_name": "activity_refresh",
            "state": self.state.value,
            "is_running": self.is_running,
            "is_scheduled": self.is_scheduled,
            "interval_minutes": self.interval_minutes,
            "batch_size": self.batch_size,
            "stats": self._stats.to_dict(),
        }

    def health_check(self) -> dict:
        """Unhealthy when a scheduled job has not run within twice its interval."""
        now = self.clock()
        last_run_time = self._stats.last_run_time
        overdue_threshold = timedelta(minutes=self.interval_minutes * 2)
        is_overdue = (
            self.is_scheduled
            and last_run_time is not None
            and (now - last_run_time) > overdue_threshold
        )

        health_status = {
            "healthy": not is_overdue,
            "service": "activity_refresh_job",
            "is_running": self.is_running,
            "is_scheduled": self.is_scheduled,
            "last_run_time": last_run_time.isoformat() if last_run_time else None,
            "last_run_state": (
                self._stats.last_run_state.value if self._stats.last_run_state else None
            ),
            "is_overdue": is_overdue,
        }
        if is_overdue:
            health_status["warning"] = (
                f"Job overdue by {(now - last_run_time).total_seconds() / 60:.1f} minutes"
            )
        return health_status
