"""
Activity evaluators.

One evaluator per activity category. Each reads the decoded payloads of the
data sources its category needs and returns an EvaluationOutcome. Upstream
data comes from a third party, so an evaluator never raises: unexpected
shapes or values are logged and reported as "not completed".
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any

from app.features.weekly_tracker.domain.models import (
    NOT_COMPLETED,
    ActivityCategory,
    DataSource,
    EvaluationOutcome,
    QuestCompletion,
    QuestDetail,
    RaidDifficulty,
    RunDetail,
    SeasonalDetail,
    TrackedActivityDefinition,
)
from app.features.weekly_tracker.domain.payloads import (
    CompletedQuestLog,
    MythicPlusProfile,
    PvpSummary,
    RaidEncounterProfile,
    RaidMode,
    TypedLabel,
    decode_payload,
)
from app.features.weekly_tracker.services.reset_clock import daily_boundary, local_date
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

RAID_DIFFICULTY_BY_SUFFIX: dict[str, RaidDifficulty] = {
    "_normal_weekly": RaidDifficulty.NORMAL,
    "_heroic_weekly": RaidDifficulty.HEROIC,
    "_mythic_weekly": RaidDifficulty.MYTHIC,
}

# (accepted display names, accepted type codes) per difficulty.
# Normal also accepts Raid Finder (LFR).
DIFFICULTY_LABELS: dict[RaidDifficulty, tuple[frozenset[str], frozenset[str]]] = {
    RaidDifficulty.NORMAL: (frozenset({"Normal", "Raid Finder"}), frozenset({"NORMAL", "LFR"})),
    RaidDifficulty.HEROIC: (frozenset({"Heroic"}), frozenset({"HEROIC"})),
    RaidDifficulty.MYTHIC: (frozenset({"Mythic"}), frozenset({"MYTHIC"})),
}

MODE_COMPLETE_STATUS = "COMPLETE"


def raid_difficulty_for(definition: TrackedActivityDefinition) -> RaidDifficulty:
    """Difficulty an activity tracks: explicit on the definition, else from its id suffix."""
    if definition.raid_difficulty is not None:
        return definition.raid_difficulty
    for suffix, difficulty in RAID_DIFFICULTY_BY_SUFFIX.items():
        if definition.id.endswith(suffix):
            return difficulty
    return RaidDifficulty.NORMAL


def matches_raid_difficulty(label: TypedLabel | None, target: RaidDifficulty) -> bool:
    if label is None:
        return False
    names, types = DIFFICULTY_LABELS[target]
    return (label.name or "") in names or (label.type or "") in types


def _on_or_after(instant: datetime | None, boundary: datetime) -> bool:
    return instant is not None and instant >= boundary


class ActivityEvaluator(ABC):
    """Evaluate completion of one activity from its category's payloads."""

    category: ActivityCategory

    def evaluate(
        self,
        definition: TrackedActivityDefinition,
        payloads: Mapping[DataSource, Any],
        reset_boundary: datetime,
        now: datetime,
    ) -> EvaluationOutcome:
        decoded = {
            source: decode_payload(source, payloads.get(source)) for source in definition.sources
        }
        try:
            return self._evaluate(definition, decoded, reset_boundary, now)
        except Exception as e:
            logger.error(
                "Activity evaluation failed, reporting not completed",
                activity_id=definition.id,
                category=self.category.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            return NOT_COMPLETED

    @abstractmethod
    def _evaluate(
        self,
        definition: TrackedActivityDefinition,
        payloads: Mapping[DataSource, Any],
        reset_boundary: datetime,
        now: datetime,
    ) -> EvaluationOutcome: ...


class TimeBoxedRunEvaluator(ActivityEvaluator):
    """Mythic+ style runs: any run finished since the reset counts."""

    category = ActivityCategory.TIME_BOXED_RUN

    def _evaluate(self, definition, payloads, reset_boundary, now):
        profile: MythicPlusProfile | None = payloads.get(DataSource.MYTHIC_PLUS)
        if profile is None:
            return NOT_COMPLETED

        # A run can be listed both in the current period and in a season
        qualifying = {}
        for run in profile.all_runs():
            if not _on_or_after(run.completed_timestamp, reset_boundary):
                continue
            key = (
                run.completed_timestamp,
                run.dungeon.id if run.dungeon else None,
                run.keystone_level,
            )
            qualifying.setdefault(key, run)

        if not qualifying:
            return NOT_COMPLETED

        runs = list(qualifying.values())
        best = max(runs, key=lambda run: run.keystone_level or 0)
        return EvaluationOutcome(
            completed=True,
            detail=RunDetail(
                highest_level=best.keystone_level or 0,
                qualifying_runs=len(runs),
                best_run_dungeon=best.dungeon.name if best.dungeon else None,
            ),
        )


class RaidKillEvaluator(ActivityEvaluator):
    """Raid boss kills at the difficulty the activity tracks."""

    category = ActivityCategory.RAID_KILL

    def _evaluate(self, definition, payloads, reset_boundary, now):
        profile: RaidEncounterProfile | None = payloads.get(DataSource.RAIDS)
        if profile is None:
            return NOT_COMPLETED

        difficulty = raid_difficulty_for(definition)
        for expansion in profile.expansions:
            for instance in expansion.instances:
                for mode in instance.modes:
                    if self._mode_killed_since(mode, difficulty, reset_boundary):
                        logger.debug(
                            "Raid kill found this week",
                            activity_id=definition.id,
                            difficulty=difficulty.value,
                            instance=instance.instance.name if instance.instance else None,
                        )
                        return EvaluationOutcome(completed=True)

        return NOT_COMPLETED

    @staticmethod
    def _mode_killed_since(mode: RaidMode, difficulty: RaidDifficulty, boundary: datetime) -> bool:
        if not matches_raid_difficulty(mode.difficulty, difficulty):
            return False
        if mode.status is None or mode.status.type != MODE_COMPLETE_STATUS:
            return False
        if mode.progress is None:
            return False
        return any(
            _on_or_after(encounter.last_kill_timestamp, boundary)
            for encounter in mode.progress.encounters
        )


class QuestEvaluator(ActivityEvaluator):
    """
    Weekly quest engagement.

    Approximation: any quest completed since the reset counts, the quest is
    not checked against a list of weekly quest ids.
    """

    category = ActivityCategory.QUEST

    def _evaluate(self, definition, payloads, reset_boundary, now):
        log: CompletedQuestLog | None = payloads.get(DataSource.QUESTS)
        if log is None:
            return NOT_COMPLETED

        this_week = [
            quest
            for quest in log.quests
            if _on_or_after(quest.completed_timestamp, reset_boundary)
        ]
        if not this_week:
            return NOT_COMPLETED

        this_week.sort(key=lambda quest: quest.completed_timestamp, reverse=True)
        completions = [
            QuestCompletion(
                name=quest.display_name,
                completed_at=quest.completed_timestamp,
                hours_ago=max(0, int((now - quest.completed_timestamp) // timedelta(hours=1))),
            )
            for quest in this_week
        ]
        return EvaluationOutcome(
            completed=True,
            detail=QuestDetail(
                completed_quests=completions,
                total_quests_this_week=len(completions),
            ),
        )


class SeasonalEvaluator(ActivityEvaluator):
    """
    Limited-time events.

    Active only between the event's calendar dates and reset daily, so the
    weekly boundary is ignored in favour of the event's daily boundary.
    """

    category = ActivityCategory.SEASONAL

    def _evaluate(self, definition, payloads, reset_boundary, now):
        event = definition.seasonal_event
        today = local_date(now, event.timezone)
        if not event.is_active_on(today):
            return EvaluationOutcome(
                completed=False,
                detail=SeasonalDetail(event_id=event.event_id, active=False),
            )

        boundary = daily_boundary(now, event.daily_reset_hour, event.timezone)
        matched_raids = self._matched_raids(payloads.get(DataSource.RAIDS), event, boundary)
        matched_quests = self._matched_quests(payloads.get(DataSource.QUESTS), event, boundary)

        return EvaluationOutcome(
            completed=bool(matched_raids or matched_quests),
            detail=SeasonalDetail(
                event_id=event.event_id,
                active=True,
                daily_boundary=boundary,
                matched_raids=matched_raids,
                matched_quests=matched_quests,
            ),
        )

    @staticmethod
    def _matched_raids(
        profile: RaidEncounterProfile | None, event, boundary: datetime
    ) -> list[str]:
        if profile is None or not event.raid_instance_names:
            return []

        wanted = {name.casefold() for name in event.raid_instance_names}
        matched: list[str] = []
        for expansion in profile.expansions:
            for instance in expansion.instances:
                name = instance.instance.name if instance.instance else None
                if not name or name.casefold() not in wanted or name in matched:
                    continue
                killed = any(
                    _on_or_after(encounter.last_kill_timestamp, boundary)
                    for mode in instance.modes
                    if mode.progress is not None
                    for encounter in mode.progress.encounters
                )
                if killed:
                    matched.append(name)
        return matched

    @staticmethod
    def _matched_quests(log: CompletedQuestLog | None, event, boundary: datetime) -> list[str]:
        if log is None or not event.quest_name_substrings:
            return []

        needles = [needle.casefold() for needle in event.quest_name_substrings]
        return [
            quest.display_name
            for quest in log.quests
            if _on_or_after(quest.completed_timestamp, boundary)
            and any(needle in quest.display_name.casefold() for needle in needles)
        ]


class PvpEvaluator(ActivityEvaluator):
    """
    PvP participation.

    The PvP summary has no timestamps, so any honor gained counts; this is
    not reset-relative.
    """

    category = ActivityCategory.PVP

    def _evaluate(self, definition, payloads, reset_boundary, now):
        summary: PvpSummary | None = payloads.get(DataSource.PVP)
        if summary is None:
            return NOT_COMPLETED
        return EvaluationOutcome(
            completed=(summary.honor_level or 0) > 0 or (summary.honor_progress or 0) > 0
        )


DEFAULT_EVALUATORS: dict[ActivityCategory, ActivityEvaluator] = {
    evaluator.category: evaluator
    for evaluator in (
        TimeBoxedRunEvaluator(),
        RaidKillEvaluator(),
        QuestEvaluator(),
        SeasonalEvaluator(),
        PvpEvaluator(),
    )
}
