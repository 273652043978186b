"""
Tests for building the tracker services from settings.
"""

import json

import pytest

from app.config import Settings
from app.features.weekly_tracker.domain.catalog import CatalogError
from app.features.weekly_tracker.domain.models import DataSource
from app.features.weekly_tracker.wiring import build_tracker_services


@pytest.mark.asyncio
async def test_settings_flow_into_jobs():
    settings = Settings(
        REFRESH_INTERVAL_MINUTES=15,
        REFRESH_BATCH_SIZE=3,
        RESET_CHECK_INTERVAL_MINUTES=30,
        RESET_WEEKDAY=2,
        RESET_HOUR_UTC=4,
    )
    tracker = build_tracker_services(settings)
    try:
        assert tracker.refresh_job.interval_minutes == 15
        assert tracker.refresh_job.batch_size == 3
        assert tracker.reset_job.check_interval_minutes == 30
        assert tracker.reset_job.schedule == settings.reset_schedule()
        assert tracker.refresh_job.analyzer is tracker.analyzer
        assert tracker.refresh_job.progress_repository is tracker.progress_repository
        assert not tracker.refresh_job.is_scheduled
        assert not tracker.reset_job.is_scheduled
    finally:
        await tracker.shutdown()


@pytest.mark.asyncio
async def test_fetched_sources_follow_catalog_plus_achievements(tmp_path):
    path = tmp_path / "catalog.json"
    path.write_text(
        json.dumps(
            {
                "activities": [
                    {
                        "id": "weekly_quest",
                        "name": "Weekly Quest",
                        "category": "quest",
                        "description": "Complete weekly world quest",
                    }
                ]
            }
        )
    )
    tracker = build_tracker_services(Settings(ACTIVITY_CATALOG_PATH=str(path)))
    try:
        assert tracker.refresh_job.sources == (DataSource.QUESTS, DataSource.ACHIEVEMENTS)
    finally:
        await tracker.shutdown()


def test_bad_catalog_path_fails_fast(tmp_path):
    path = tmp_path / "catalog.json"
    path.write_text("not json")

    with pytest.raises(CatalogError):
        build_tracker_services(Settings(ACTIVITY_CATALOG_PATH=str(path)))
