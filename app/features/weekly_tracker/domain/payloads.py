"""
Typed shapes for the profile API payloads the evaluators read.

Every field is optional and unknown keys are ignored, so a payload that is
merely sparse still decodes. Payloads that cannot be decoded at all are
logged and treated as absent by decode_payload().
"""

from datetime import UTC, datetime, timedelta
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError

from app.features.weekly_tracker.domain.models import DataSource
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
DEFAULT_LOCALE = "en_US"


def _from_epoch_millis(value: Any) -> Any:
    """The API reports instants as integer milliseconds since the epoch."""
    if isinstance(value, bool):
        raise ValueError("boolean is not a timestamp")
    if isinstance(value, int | float):
        try:
            return EPOCH + timedelta(milliseconds=value)
        except (OverflowError, OSError) as e:
            raise ValueError(f"timestamp out of range: {value}") from e
    return value


def _collapse_localized(value: Any) -> Any:
    """Names come back as a plain string or as a {locale: text} mapping."""
    if isinstance(value, dict):
        if DEFAULT_LOCALE in value:
            return value[DEFAULT_LOCALE]
        return next(iter(value.values()), None)
    return value


def _mappings_only(value: Any) -> Any:
    """Drop list entries that are not objects instead of rejecting the payload."""
    if value is None:
        return []
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict | BaseModel)]


EpochMillis = Annotated[datetime | None, BeforeValidator(_from_epoch_millis)]
LocalizedStr = Annotated[str | None, BeforeValidator(_collapse_localized)]


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class NamedRef(_Payload):
    id: int | None = None
    name: LocalizedStr = None


class TypedLabel(_Payload):
    type: str | None = None
    name: LocalizedStr = None


# Mythic+ ---------------------------------------------------------------------


class MythicPlusRun(_Payload):
    completed_timestamp: EpochMillis = None
    keystone_level: int | None = None
    dungeon: NamedRef | None = None


class MythicPlusPeriod(_Payload):
    best_runs: Annotated[list[MythicPlusRun], BeforeValidator(_mappings_only)] = Field(
        default_factory=list
    )


class MythicPlusSeason(_Payload):
    id: int | None = None
    best_runs: Annotated[list[MythicPlusRun], BeforeValidator(_mappings_only)] = Field(
        default_factory=list
    )


class MythicPlusProfile(_Payload):
    current_period: MythicPlusPeriod | None = None
    seasons: Annotated[list[MythicPlusSeason], BeforeValidator(_mappings_only)] = Field(
        default_factory=list
    )

    def all_runs(self) -> list[MythicPlusRun]:
        runs = list(self.current_period.best_runs) if self.current_period else []
        for season in self.seasons:
            runs.extend(season.best_runs)
        return runs


# Raids -----------------------------------------------------------------------


class RaidEncounter(_Payload):
    encounter: NamedRef | None = None
    completed_count: int | None = None
    last_kill_timestamp: EpochMillis = None


class RaidProgress(_Payload):
    completed_count: int | None = None
    total_count: int | None = None
    encounters: Annotated[list[RaidEncounter], BeforeValidator(_mappings_only)] = Field(
        default_factory=list
    )


class RaidMode(_Payload):
    difficulty: TypedLabel | None = None
    status: TypedLabel | None = None
    progress: RaidProgress | None = None


class RaidInstance(_Payload):
    instance: NamedRef | None = None
    modes: Annotated[list[RaidMode], BeforeValidator(_mappings_only)] = Field(
        default_factory=list
    )


class RaidExpansion(_Payload):
    expansion: NamedRef | None = None
    instances: Annotated[list[RaidInstance], BeforeValidator(_mappings_only)] = Field(
        default_factory=list
    )


class RaidEncounterProfile(_Payload):
    expansions: Annotated[list[RaidExpansion], BeforeValidator(_mappings_only)] = Field(
        default_factory=list
    )


# Quests ----------------------------------------------------------------------


class CompletedQuest(_Payload):
    quest: NamedRef | None = None
    name: LocalizedStr = None
    completed_timestamp: EpochMillis = None

    @property
    def display_name(self) -> str:
        if self.quest and self.quest.name:
            return self.quest.name
        return self.name or "Unknown"


class CompletedQuestLog(_Payload):
    quests: Annotated[list[CompletedQuest], BeforeValidator(_mappings_only)] = Field(
        default_factory=list
    )


# PvP / achievements ----------------------------------------------------------


class PvpSummary(_Payload):
    honor_level: int | None = None
    honor_progress: int | None = None
    honorable_kills: int | None = None


class AchievementSummary(_Payload):
    total_quantity: int | None = None
    total_points: int | None = None


# Account roster --------------------------------------------------------------


class RealmRef(_Payload):
    id: int | None = None
    slug: str
    name: LocalizedStr = None


class ProfileCharacter(_Payload):
    id: int
    name: str
    realm: RealmRef
    level: int | None = None
    playable_class: NamedRef | None = None
    playable_race: NamedRef | None = None
    faction: TypedLabel | None = None


class WowAccount(_Payload):
    id: int | None = None
    characters: Annotated[list[ProfileCharacter], BeforeValidator(_mappings_only)] = Field(
        default_factory=list
    )


class AccountProfile(_Payload):
    wow_accounts: Annotated[list[WowAccount], BeforeValidator(_mappings_only)] = Field(
        default_factory=list
    )


PAYLOAD_MODELS: dict[DataSource, type[_Payload]] = {
    DataSource.MYTHIC_PLUS: MythicPlusProfile,
    DataSource.RAIDS: RaidEncounterProfile,
    DataSource.QUESTS: CompletedQuestLog,
    DataSource.PVP: PvpSummary,
    DataSource.ACHIEVEMENTS: AchievementSummary,
}


def decode_payload(source: DataSource, raw: Any) -> _Payload | None:
    """
    Decode a raw JSON payload for one data source.

    Returns None for absent payloads and for payloads whose shape cannot be
    decoded; the latter are logged so upstream API changes are visible.
    """
    if raw is None:
        return None

    model = PAYLOAD_MODELS[source]
    if isinstance(raw, model):
        return raw

    try:
        return model.model_validate(raw)
    except ValidationError as e:
        logger.warning(
            "Malformed payload ignored",
            source=source.value,
            error_count=e.error_count(),
            first_error=e.errors()[0]["msg"] if e.error_count() else None,
        )
        return None
    except Exception as e:
        logger.warning(
            "Undecodable payload ignored",
            source=source.value,
            error=str(e),
            error_type=type(e).__name__,
        )
        return None
