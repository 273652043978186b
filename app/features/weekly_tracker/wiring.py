"""
Construction of the weekly tracker services.

Both the API process and the CLI worker build their tracker objects here so
the two entry points share one configuration path. Nothing is created at
import time.
"""

from dataclasses import dataclass

from app.config import Settings
from app.features.weekly_tracker.domain.catalog import load_activity_catalog
from app.features.weekly_tracker.domain.models import DataSource
from app.features.weekly_tracker.jobs.refresh_job import ActivityRefreshJob
from app.features.weekly_tracker.jobs.reset_job import WeeklyResetJob
from app.features.weekly_tracker.repository.character_progress_repository import (
    CharacterProgressRepository,
)
from app.features.weekly_tracker.repository.user_repository import UserRepository
from app.features.weekly_tracker.services.analyzer import WeeklyActivityAnalyzer
from app.features.weekly_tracker.services.blizzard_client import BlizzardApiClient
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


@dataclass
class TrackerServices:
    analyzer: WeeklyActivityAnalyzer
    api_client: BlizzardApiClient
    progress_repository: CharacterProgressRepository
    refresh_job: ActivityRefreshJob
    reset_job: WeeklyResetJob

    def start_background_jobs(self) -> None:
        self.refresh_job.start()
        self.reset_job.start()

    async def shutdown(self) -> None:
        """Stop the timers, let an in-flight run finish, then release the HTTP client."""
        self.reset_job.stop()
        self.refresh_job.stop()
        await self.reset_job.wait_stopped()
        await self.refresh_job.wait_stopped()
        await self.api_client.close()


def build_tracker_services(settings: Settings) -> TrackerServices:
    """
    Build the tracker object graph from settings.

    Raises:
        CatalogError: If ACTIVITY_CATALOG_PATH points to an unusable file
        ValueError: If a job setting is out of range
    """
    schedule = settings.reset_schedule()
    catalog = load_activity_catalog(settings.ACTIVITY_CATALOG_PATH)
    analyzer = WeeklyActivityAnalyzer(catalog=catalog, schedule=schedule)

    # Achievement data is always fetched alongside the sources the catalog reads
    sources = tuple(dict.fromkeys((*analyzer.required_sources, DataSource.ACHIEVEMENTS)))

    api_client = BlizzardApiClient.from_settings(settings)
    progress_repository = CharacterProgressRepository()

    refresh_job = ActivityRefreshJob(
        analyzer,
        api_client,
        UserRepository(),
        progress_repository,
        interval_minutes=settings.REFRESH_INTERVAL_MINUTES,
        batch_size=settings.REFRESH_BATCH_SIZE,
        batch_delay_seconds=settings.REFRESH_BATCH_DELAY_SECONDS,
        character_timeout_seconds=settings.CHARACTER_REFRESH_TIMEOUT_SECONDS,
        sources=sources,
    )
    reset_job = WeeklyResetJob(
        refresh_job,
        schedule,
        check_interval_minutes=settings.RESET_CHECK_INTERVAL_MINUTES,
    )

    logger.info(
        "Weekly tracker services built",
        activity_count=len(catalog),
        sources=[source.value for source in sources],
        reset_weekday=schedule.weekday,
        reset_time=f"{schedule.hour:02d}:{schedule.minute:02d}",
    )
    return TrackerServices(
        analyzer=analyzer,
        api_client=api_client,
        progress_repository=progress_repository,
        refresh_job=refresh_job,
        reset_job=reset_job,
    )
