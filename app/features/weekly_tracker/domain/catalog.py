"""
Catalog of tracked weekly activities.

The built-in catalog covers the standard weekly objectives. A JSON file
(ACTIVITY_CATALOG_PATH) can replace it, which is also how seasonal events
are configured. The catalog is loaded once at process start; its order is
the order of every analysis result list.
"""

import json
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from app.features.weekly_tracker.domain.models import (
    ActivityCategory,
    TrackedActivityDefinition,
)
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class CatalogError(Exception):
    """Raised when an activity catalog file cannot be used."""

    def __init__(self, message: str, path: str | None = None):
        super().__init__(message)
        self.path = path


DEFAULT_CATALOG: tuple[TrackedActivityDefinition, ...] = (
    TrackedActivityDefinition(
        id="mythic_plus_weekly",
        name="Mythic+ Weekly",
        category=ActivityCategory.TIME_BOXED_RUN,
        description="Complete a Mythic+ dungeon",
    ),
    TrackedActivityDefinition(
        id="raid_normal_weekly",
        name="Raid Normal Weekly",
        category=ActivityCategory.RAID_KILL,
        description="Complete normal raid encounters",
    ),
    TrackedActivityDefinition(
        id="raid_heroic_weekly",
        name="Raid Heroic Weekly",
        category=ActivityCategory.RAID_KILL,
        description="Complete heroic raid encounters",
    ),
    TrackedActivityDefinition(
        id="raid_mythic_weekly",
        name="Raid Mythic Weekly",
        category=ActivityCategory.RAID_KILL,
        description="Complete mythic raid encounters",
    ),
    TrackedActivityDefinition(
        id="weekly_quest",
        name="Weekly Quest",
        category=ActivityCategory.QUEST,
        description="Complete weekly world quest",
    ),
    TrackedActivityDefinition(
        id="pvp_weekly",
        name="PvP Weekly",
        category=ActivityCategory.PVP,
        description="Complete PvP weekly objectives",
    ),
)

_catalog_adapter = TypeAdapter(list[TrackedActivityDefinition])


def parse_catalog(
    raw_json: str | bytes, path: str | None = None
) -> tuple[TrackedActivityDefinition, ...]:
    """
    Parse catalog JSON: either a list of definitions or {"activities": [...]}.

    Raises:
        CatalogError: On invalid JSON, invalid entries, duplicate ids or an empty list
    """
    try:
        raw = json.loads(raw_json)
    except ValueError as e:
        raise CatalogError(f"Activity catalog is not valid JSON: {e}", path) from e

    if isinstance(raw, dict):
        if "activities" not in raw:
            raise CatalogError("Catalog object must contain an 'activities' list", path)
        raw = raw["activities"]

    try:
        definitions = _catalog_adapter.validate_python(raw)
    except ValidationError as e:
        raise CatalogError(f"Invalid activity catalog: {e}", path) from e

    if not definitions:
        raise CatalogError("Activity catalog is empty", path)

    seen: set[str] = set()
    duplicates: list[str] = []
    for definition in definitions:
        if definition.id in seen:
            duplicates.append(definition.id)
        seen.add(definition.id)
    if duplicates:
        raise CatalogError(f"Duplicate activity ids: {', '.join(duplicates)}", path)

    return tuple(definitions)


def load_activity_catalog(path: str | None = None) -> tuple[TrackedActivityDefinition, ...]:
    """Load the catalog from a JSON file, or return the built-in catalog when no path is set."""
    if not path:
        logger.info("Using built-in activity catalog", activity_count=len(DEFAULT_CATALOG))
        return DEFAULT_CATALOG

    catalog_path = Path(path)
    try:
        raw = catalog_path.read_bytes()
    except OSError as e:
        raise CatalogError(f"Cannot read activity catalog: {e}", path) from e

    catalog = parse_catalog(raw, path)
    logger.info(
        "Loaded activity catalog",
        path=path,
        activity_count=len(catalog),
        seasonal_count=sum(1 for d in catalog if d.category is ActivityCategory.SEASONAL),
    )
    return catalog
