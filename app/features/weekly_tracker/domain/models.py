"""
Domain models for the weekly tracker feature.

Catalog definitions and completion results are pydantic models because they
are loaded from JSON configuration and persisted/served as JSON. The shapes
passed between the refresh job and its collaborators are plain dataclasses.
"""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Annotated, Any, Literal

import pytz
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ActivityCategory(str, Enum):
    TIME_BOXED_RUN = "time_boxed_run"
    RAID_KILL = "raid_kill"
    QUEST = "quest"
    SEASONAL = "seasonal"
    PVP = "pvp"


class DataSource(str, Enum):
    """One character endpoint of the profile API."""

    MYTHIC_PLUS = "mythic_plus"
    RAIDS = "raids"
    QUESTS = "quests"
    PVP = "pvp"
    ACHIEVEMENTS = "achievements"


class ResetCadence(str, Enum):
    WEEKLY = "weekly"
    DAILY = "daily"


class RaidDifficulty(str, Enum):
    NORMAL = "Normal"
    HEROIC = "Heroic"
    MYTHIC = "Mythic"


# Data sources each category reads; seasonal events look at both raids and quests.
CATEGORY_SOURCES: dict[ActivityCategory, tuple[DataSource, ...]] = {
    ActivityCategory.TIME_BOXED_RUN: (DataSource.MYTHIC_PLUS,),
    ActivityCategory.RAID_KILL: (DataSource.RAIDS,),
    ActivityCategory.QUEST: (DataSource.QUESTS,),
    ActivityCategory.SEASONAL: (DataSource.RAIDS, DataSource.QUESTS),
    ActivityCategory.PVP: (DataSource.PVP,),
}


class SeasonalEventConfig(BaseModel):
    """Calendar window and matching rules for a limited-time event."""

    model_config = ConfigDict(frozen=True)

    event_id: str
    start_date: date
    end_date: date
    raid_instance_names: tuple[str, ...] = ()
    quest_name_substrings: tuple[str, ...] = ()
    daily_reset_hour: int = Field(default=0, ge=0, le=23)
    timezone: str = "UTC"

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        if value not in pytz.all_timezones_set:
            raise ValueError(f"Unknown timezone: {value}")
        return value

    @model_validator(mode="after")
    def _ordered_dates(self) -> "SeasonalEventConfig":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self

    def is_active_on(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date


class TrackedActivityDefinition(BaseModel):
    """Static catalog entry a character's completion is evaluated against."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    category: ActivityCategory
    description: str
    reset_day: str = "TUESDAY"
    cadence: ResetCadence = ResetCadence.WEEKLY
    raid_difficulty: RaidDifficulty | None = None
    seasonal_event: SeasonalEventConfig | None = None

    @field_validator("description")
    @classmethod
    def _renderable_template(cls, value: str) -> str:
        try:
            value.format_map(_KeepMissing())
        except (ValueError, IndexError, KeyError, AttributeError, TypeError) as e:
            raise ValueError(f"Unusable description template {value!r}: {e}") from e
        return value

    @model_validator(mode="after")
    def _seasonal_needs_event(self) -> "TrackedActivityDefinition":
        if self.category is ActivityCategory.SEASONAL and self.seasonal_event is None:
            raise ValueError(f"Seasonal activity '{self.id}' requires a seasonal_event")
        return self

    @property
    def sources(self) -> tuple[DataSource, ...]:
        return CATEGORY_SOURCES[self.category]

    def render_description(self, context: dict[str, Any] | None = None) -> str:
        """Fill ``{placeholders}`` from context, leaving unknown ones untouched."""
        try:
            return self.description.format_map(_KeepMissing(context or {}))
        except (ValueError, IndexError, KeyError, AttributeError, TypeError):
            # A format spec that does not fit the detail value
            return self.description


class _KeepMissing(dict):
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


# Category-specific detail ----------------------------------------------------


class RunDetail(BaseModel):
    kind: Literal["time_boxed_run"] = "time_boxed_run"
    highest_level: int
    qualifying_runs: int
    best_run_dungeon: str | None = None


class QuestCompletion(BaseModel):
    name: str
    completed_at: datetime
    hours_ago: int


class QuestDetail(BaseModel):
    kind: Literal["quest"] = "quest"
    completed_quests: list[QuestCompletion]
    total_quests_this_week: int


class SeasonalDetail(BaseModel):
    kind: Literal["seasonal"] = "seasonal"
    event_id: str
    active: bool
    daily_boundary: datetime | None = None
    matched_raids: list[str] = Field(default_factory=list)
    matched_quests: list[str] = Field(default_factory=list)


CategoryDetail = Annotated[RunDetail | QuestDetail | SeasonalDetail, Field(discriminator="kind")]


class ActivityCompletionResult(BaseModel):
    """Completion state of one tracked activity for one character."""

    id: str
    activity_id: str
    name: str
    category: ActivityCategory
    description: str
    reset_day: str
    completed: bool = False
    progress: int = 0
    max_progress: int = 1
    error: str | None = None
    detail: CategoryDetail | None = None

    @model_validator(mode="after")
    def _error_excludes_completion(self) -> "ActivityCompletionResult":
        if self.error is not None and (self.completed or self.detail is not None):
            raise ValueError("A result carrying an error cannot be completed or carry detail")
        return self


# Collaborator shapes ---------------------------------------------------------


@dataclass(frozen=True, slots=True)
class EvaluationOutcome:
    """Verdict returned by an activity evaluator."""

    completed: bool
    detail: Any = None


NOT_COMPLETED = EvaluationOutcome(completed=False)


@dataclass(frozen=True, slots=True)
class CategoryFetchResult:
    """Settled outcome of fetching one data source: payload or error, never both."""

    payload: Any = None
    error: str | None = None

    @classmethod
    def ok(cls, payload: Any) -> "CategoryFetchResult":
        return cls(payload=payload)

    @classmethod
    def failed(cls, error: str) -> "CategoryFetchResult":
        return cls(error=error or "Failed to fetch")

    @property
    def is_error(self) -> bool:
        return self.error is not None


@dataclass(slots=True)
class UserAccount:
    """A user with the stored API credential used for their characters."""

    user_id: str
    battle_tag: str | None
    access_credential: str | None

    def has_credential(self) -> bool:
        return bool(self.access_credential and self.access_credential.strip())


@dataclass(slots=True)
class CharacterRef:
    """A character on a user's roster, as reported by the profile API."""

    character_id: int
    name: str
    realm_slug: str
    race: str = "Unknown"
    class_name: str = "Unknown"
    level: int = 0
    faction: str = "Unknown"

    @property
    def label(self) -> str:
        return f"{self.name}@{self.realm_slug}"
