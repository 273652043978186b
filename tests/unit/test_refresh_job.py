"""
Tests for the activity refresh job: batching, failure isolation, the
single-run guard and stats publication.
"""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from app.features.weekly_tracker.domain.models import DataSource, UserAccount
from app.features.weekly_tracker.jobs import refresh_job as refresh_job_module
from app.features.weekly_tracker.jobs.refresh_job import ActivityRefreshJob, RefreshState
from app.features.weekly_tracker.services.analyzer import WeeklyActivityAnalyzer

NOW = datetime(2024, 1, 17, 12, 0, tzinfo=UTC)


def user(index: int, credential: str | None = "token") -> UserAccount:
    return UserAccount(
        user_id=f"user-{index}",
        battle_tag=f"Player#{index}",
        access_credential=f"{credential}-{index}" if credential else None,
    )


@pytest.fixture
def make_job(fake_users, fake_api, fake_progress):
    def _make(**kwargs):
        options = {
            "batch_size": 2,
            "batch_delay_seconds": 0,
            "clock": lambda: NOW,
        }
        options.update(kwargs)
        return ActivityRefreshJob(
            WeeklyActivityAnalyzer(), fake_api, fake_users, fake_progress, **options
        )

    return _make


@pytest.mark.asyncio
async def test_users_processed_in_fixed_size_batches(make_job, fake_users, monkeypatch):
    fake_users.users = [user(i, credential=None) for i in range(5)]
    batch_sizes = []
    original_settle_all = refresh_job_module.settle_all

    async def recording_settle_all(awaitables):
        awaitables = list(awaitables)
        batch_sizes.append(len(awaitables))
        return await original_settle_all(awaitables)

    monkeypatch.setattr(refresh_job_module, "settle_all", recording_settle_all)

    stats = await make_job(batch_size=2).run_once()

    assert batch_sizes == [2, 2, 1]
    assert stats["total_users"] == 5
    assert stats["skipped_users"] == 5
    assert stats["failed_refreshes"] == 0


@pytest.mark.asyncio
async def test_full_pipeline_persists_every_character(
    make_job, fake_users, fake_api, fake_progress, make_character
):
    fake_users.users = [user(1), user(2)]
    fake_api.add_character("token-1", make_character(101))
    fake_api.add_character("token-1", make_character(102))
    fake_api.add_character("token-2", make_character(201))
    fake_api.payloads[("char101", DataSource.PVP)] = {"honor_level": 3}

    stats = await make_job().run_once()

    assert stats["total_characters"] == 3
    assert stats["successful_refreshes"] == 3
    assert stats["failed_refreshes"] == 0
    assert set(fake_progress.stored) == {101, 102, 201}

    pvp = [a for a in fake_progress.stored[101]["activities"] if a["activity_id"] == "pvp_weekly"]
    assert pvp[0]["completed"] is True
    assert len(fake_progress.stored[201]["activities"]) == 6


@pytest.mark.asyncio
async def test_only_required_sources_are_fetched(make_job, fake_users, fake_api, make_character):
    fake_users.users = [user(1)]
    fake_api.add_character("token-1", make_character(101))
    analyzer = WeeklyActivityAnalyzer()

    await make_job(sources=analyzer.required_sources).run_once()

    fetched = {source for _, source in fake_api.category_calls}
    assert fetched == {DataSource.MYTHIC_PLUS, DataSource.RAIDS, DataSource.QUESTS, DataSource.PVP}


@pytest.mark.asyncio
async def test_roster_failure_is_isolated_to_one_user(
    make_job, fake_users, fake_api, fake_progress, make_character
):
    fake_users.users = [user(1), user(2), user(3)]
    fake_api.add_character("token-1", make_character(101))
    fake_api.add_character("token-3", make_character(301))
    fake_api.roster_errors["token-2"] = RuntimeError("HTTP 401: Unauthorized")

    stats = await make_job().run_once()

    assert stats["total_users"] == 3
    assert stats["total_characters"] == 2
    assert stats["successful_refreshes"] == 2
    assert stats["failed_refreshes"] == 1
    assert set(fake_progress.stored) == {101, 301}


@pytest.mark.asyncio
async def test_character_failure_does_not_stop_siblings(
    make_job, fake_users, fake_api, fake_progress, make_character
):
    fake_users.users = [user(1)]
    for character_id in (101, 102, 103):
        fake_api.add_character("token-1", make_character(character_id))
    fake_progress.fail_for = {102}
    job = make_job()

    stats = await job.run_once()

    assert stats["successful_refreshes"] == 2
    assert stats["failed_refreshes"] == 1
    assert set(fake_progress.stored) == {101, 103}

    errors = job.get_stats().errors
    assert errors[0]["user_id"] == "user-1"
    assert errors[0]["character"] == "char102@area-52"
    assert "write failed" in errors[0]["error"]


@pytest.mark.asyncio
async def test_source_error_is_stored_as_activity_error(
    make_job, fake_users, fake_api, fake_progress, make_character
):
    fake_users.users = [user(1)]
    fake_api.add_character("token-1", make_character(101))
    fake_api.source_errors[("char101", DataSource.RAIDS)] = RuntimeError("HTTP 503")

    stats = await make_job().run_once()

    assert stats["successful_refreshes"] == 1
    activities = {a["activity_id"]: a for a in fake_progress.stored[101]["activities"]}
    assert activities["raid_heroic_weekly"]["error"] == "HTTP 503"
    assert activities["raid_heroic_weekly"]["completed"] is False
    assert activities["mythic_plus_weekly"]["error"] is None


@pytest.mark.asyncio
async def test_character_timeout_counts_as_failure(
    make_job, fake_users, fake_api, fake_progress, make_character
):
    fake_users.users = [user(1)]
    fake_api.add_character("token-1", make_character(101))
    fake_api.delay_seconds = 1.0

    stats = await make_job(character_timeout_seconds=0.01).run_once()

    assert stats["failed_refreshes"] == 1
    assert fake_progress.stored == {}


@pytest.mark.asyncio
async def test_user_without_credential_is_skipped(make_job, fake_users, fake_api):
    fake_users.users = [user(1, credential=None)]

    stats = await make_job().run_once()

    assert stats["skipped_users"] == 1
    assert stats["failed_refreshes"] == 0
    assert fake_api.roster_calls == []


@pytest.mark.asyncio
async def test_empty_user_list_completes(make_job):
    job = make_job()

    stats = await job.run_once()

    assert stats["total_users"] == 0
    assert stats["last_run_state"] == RefreshState.COMPLETED.value
    assert job.state is RefreshState.IDLE


@pytest.mark.asyncio
async def test_concurrent_trigger_is_skipped(make_job, fake_users, fake_api, make_character):
    fake_users.users = [user(1)]
    fake_api.add_character("token-1", make_character(101))
    fake_api.gate = asyncio.Event()
    job = make_job()

    first = asyncio.create_task(job.run_once())
    await asyncio.sleep(0)
    assert job.is_running is True

    second = await job.run_once()
    assert second == {"skipped": True, "reason": "already_running"}

    fake_api.gate.set()
    stats = await first

    assert stats["successful_refreshes"] == 1
    assert fake_api.roster_calls == ["token-1"]
    assert job.is_running is False


@pytest.mark.asyncio
async def test_failed_run_keeps_last_good_counters(make_job, fake_users, fake_api, make_character):
    fake_users.users = [user(1)]
    fake_api.add_character("token-1", make_character(101))
    job = make_job()
    await job.run_once()

    fake_users.error = RuntimeError("connection refused")
    stats = await job.run_once()

    assert stats["last_run_state"] == RefreshState.FAILED.value
    assert "connection refused" in stats["job_error"]
    assert stats["successful_refreshes"] == 1
    assert stats["completed_runs"] == 1
    assert job.is_running is False


@pytest.mark.asyncio
async def test_get_stats_returns_a_copy(make_job, fake_users):
    fake_users.users = [user(1, credential=None)]
    job = make_job()
    await job.run_once()

    snapshot = job.get_stats()
    snapshot.skipped_users = 99
    snapshot.errors.append({"error": "tampered"})

    assert job.get_stats().skipped_users == 1
    assert job.get_stats().errors == []


@pytest.mark.asyncio
async def test_average_duration_accumulates(make_job):
    job = make_job()

    await job.run_once()
    await job.run_once()

    stats = job.get_stats()
    assert stats.completed_runs == 2
    assert stats.last_run_time == NOW
    assert stats.average_duration_seconds >= 0


@pytest.mark.asyncio
async def test_force_refresh_runs_the_same_pipeline(make_job, fake_users, fake_api, make_character):
    fake_users.users = [user(1)]
    fake_api.add_character("token-1", make_character(101))

    stats = await make_job().force_refresh()

    assert stats["successful_refreshes"] == 1


@pytest.mark.asyncio
async def test_scheduler_runs_immediately_and_stops(make_job, fake_users):
    ran = asyncio.Event()

    async def fetch_users():
        ran.set()
        return []

    fake_users.fetch_users = fetch_users
    job = make_job(interval_minutes=30)

    job.start()
    assert job.is_scheduled is True
    await asyncio.wait_for(ran.wait(), timeout=1)

    job.stop()
    job.stop()
    await asyncio.wait_for(job.wait_stopped(), timeout=1)

    assert job.is_scheduled is False
    assert job.get_stats().last_run_state is RefreshState.COMPLETED


def test_invalid_batch_size_is_rejected(make_job):
    with pytest.raises(ValueError):
        make_job(batch_size=0)


def test_health_check_reports_overdue_only_when_scheduled(make_job):
    job = make_job()
    job._stats.last_run_time = NOW - timedelta(hours=5)

    health = job.health_check()

    assert health["healthy"] is True
    assert health["is_overdue"] is False
    assert health["service"] == "activity_refresh_job"


def test_job_status_shape(make_job):
    status = make_job().get_job_status()

    assert status["job_name"] == "activity_refresh"
    assert status["state"] == "idle"
    assert status["batch_size"] == 2
    assert status["stats"]["completed_runs"] == 0


@pytest.mark.asyncio
async def test_failing_user_in_middle_batch_is_isolated(
    make_job, fake_users, fake_api, fake_progress, make_character, monkeypatch
):
    fake_users.users = [user(i) for i in range(1, 6)]
    for i in range(1, 6):
        fake_api.add_character(f"token-{i}", make_character(i * 100))
        fake_api.add_character(f"token-{i}", make_character(i * 100 + 1))
    fake_progress.fail_for = {300, 301}
    sleeps = []

    async def recording_sleep(delay):
        sleeps.append(delay)

    monkeypatch.setattr(refresh_job_module.asyncio, "sleep", recording_sleep)

    stats = await make_job(batch_size=2, batch_delay_seconds=0.5).run_once()

    assert set(fake_progress.stored) == {100, 101, 200, 201, 400, 401, 500, 501}
    assert stats["successful_refreshes"] == 8
    assert stats["failed_refreshes"] == 2
    # Pause between batches, none after the last one
    assert sleeps == [0.5, 0.5]


async def wait_until(predicate):
    for _ in range(100):
        if predicate():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("condition not reached")


@pytest.mark.asyncio
async def test_next_run_time_follows_the_scheduler_loop(make_job):
    current = {"now": NOW}
    job = make_job(interval_minutes=30, clock=lambda: current["now"])

    job.start()
    await wait_until(lambda: job.get_stats().next_run_time is not None)
    assert job.get_stats().next_run_time == NOW + timedelta(minutes=30)

    current["now"] = NOW + timedelta(minutes=10)
    await job.force_refresh()

    stats = job.get_stats()
    assert stats.last_run_time == NOW + timedelta(minutes=10)
    assert stats.next_run_time == NOW + timedelta(minutes=30)

    job.stop()
    assert job.get_stats().next_run_time is None
    await asyncio.wait_for(job.wait_stopped(), timeout=1)
    assert job.get_stats().next_run_time is None


@pytest.mark.asyncio
async def test_unscheduled_run_has_no_next_run_time(make_job):
    job = make_job()

    await job.run_once()

    assert job.get_stats().last_run_time == NOW
    assert job.get_stats().next_run_time is None
