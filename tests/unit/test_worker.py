from unittest.mock import AsyncMock, MagicMock

import pytest

from app.jobs import worker


@pytest.mark.asyncio
async def test_run_worker_runs_job(monkeypatch):
    called = {"ok": False}

    async def dummy_job():
        called["ok"] = True

    monkeypatch.setitem(worker.JOB_REGISTRY, "dummy", dummy_job)

    await worker.run_worker("dummy")

    assert called["ok"] is True


@pytest.mark.asyncio
async def test_run_worker_unknown_job():
    with pytest.raises(ValueError):
        await worker.run_worker("missing")


def test_registry_lists_tracker_jobs():
    assert set(worker.JOB_REGISTRY) == {
        "activity_refresh",
        "weekly_reset",
        "activity_refresh_once",
    }


@pytest.mark.asyncio
async def test_refresh_once_opens_and_closes_resources(monkeypatch):
    tracker = MagicMock()
    tracker.refresh_job.run_once = AsyncMock(return_value={"successful_refreshes": 2})
    tracker.shutdown = AsyncMock()
    pool = MagicMock()
    pool.initialize = AsyncMock()
    pool.close = AsyncMock()

    monkeypatch.setattr(worker, "db_pool", pool)
    monkeypatch.setattr(worker, "build_tracker_services", lambda settings: tracker)

    await worker.run_worker("activity_refresh_once")

    tracker.refresh_job.run_once.assert_awaited_once()
    tracker.shutdown.assert_awaited_once()
    pool.initialize.assert_awaited_once()
    pool.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_pool_closed_when_tracker_cannot_be_built(monkeypatch):
    pool = MagicMock()
    pool.initialize = AsyncMock()
    pool.close = AsyncMock()

    def broken_build(settings):
        raise ValueError("bad catalog")

    monkeypatch.setattr(worker, "db_pool", pool)
    monkeypatch.setattr(worker, "build_tracker_services", broken_build)

    with pytest.raises(ValueError):
        await worker.run_worker("activity_refresh_once")

    pool.close.assert_awaited_once()
