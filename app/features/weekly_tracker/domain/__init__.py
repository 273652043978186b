"""
Domain subpackage for the weekly tracker feature.
"""

from .catalog import DEFAULT_CATALOG, CatalogError, load_activity_catalog
from .models import (
    ActivityCategory,
    ActivityCompletionResult,
    CategoryFetchResult,
    CharacterRef,
    DataSource,
    EvaluationOutcome,
    QuestCompletion,
    QuestDetail,
    RaidDifficulty,
    RunDetail,
    SeasonalDetail,
    SeasonalEventConfig,
    TrackedActivityDefinition,
    UserAccount,
)

__all__ = [
    "DEFAULT_CATALOG",
    "ActivityCategory",
    "ActivityCompletionResult",
    "CatalogError",
    "CategoryFetchResult",
    "CharacterRef",
    "DataSource",
    "EvaluationOutcome",
    "QuestCompletion",
    "QuestDetail",
    "RaidDifficulty",
    "RunDetail",
    "SeasonalDetail",
    "SeasonalEventConfig",
    "TrackedActivityDefinition",
    "UserAccount",
    "load_activity_catalog",
]
