from datetime import UTC, datetime

from app.features.weekly_tracker.domain.models import DataSource
from app.features.weekly_tracker.domain.payloads import (
    CompletedQuestLog,
    MythicPlusProfile,
    decode_payload,
)


def test_epoch_milliseconds_are_decoded_as_utc():
    profile = decode_payload(
        DataSource.MYTHIC_PLUS,
        {"current_period": {"best_runs": [{"completed_timestamp": 1705399200000}]}},
    )

    run = profile.all_runs()[0]
    assert run.completed_timestamp == datetime(2024, 1, 16, 10, 0, tzinfo=UTC)


def test_localized_names_collapse_to_default_locale():
    log = decode_payload(
        DataSource.QUESTS,
        {"quests": [{"quest": {"name": {"de_DE": "Auftrag", "en_US": "Errand"}}}]},
    )
    assert log.quests[0].display_name == "Errand"


def test_unknown_keys_and_non_object_entries_are_ignored():
    log = decode_payload(
        DataSource.QUESTS,
        {"quests": [42, None, {"quest": {"id": 1}, "extra": True}], "_links": {}},
    )
    assert isinstance(log, CompletedQuestLog)
    assert len(log.quests) == 1
    assert log.quests[0].display_name == "Unknown"


def test_absent_and_malformed_payloads_decode_to_none():
    assert decode_payload(DataSource.PVP, None) is None
    assert decode_payload(DataSource.PVP, "not an object") is None
    assert decode_payload(DataSource.MYTHIC_PLUS, {"current_period": "nope"}) is None


def test_decoded_instances_pass_through():
    profile = MythicPlusProfile()
    assert decode_payload(DataSource.MYTHIC_PLUS, profile) is profile


def test_out_of_range_timestamps_decode_to_none():
    huge = {"quests": [{"quest": {"name": "A"}, "completed_timestamp": 10**16}]}
    assert decode_payload(DataSource.QUESTS, huge) is None
    assert (
        decode_payload(
            DataSource.MYTHIC_PLUS,
            {"current_period": {"best_runs": [{"completed_timestamp": float("inf")}]}},
        )
        is None
    )
