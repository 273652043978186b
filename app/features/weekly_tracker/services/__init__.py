"""
Service layer for the weekly tracker feature.
"""

from .analyzer import WeeklyActivityAnalyzer
from .blizzard_client import BlizzardApiClient, BlizzardApiError
from .evaluators import DEFAULT_EVALUATORS, ActivityEvaluator
from .reset_clock import DEFAULT_SCHEDULE, ResetSchedule, ResetStatus, get_reset_status

__all__ = [
    "ActivityEvaluator",
    "BlizzardApiClient",
    "BlizzardApiError",
    "DEFAULT_EVALUATORS",
    "DEFAULT_SCHEDULE",
    "ResetSchedule",
    "ResetStatus",
    "WeeklyActivityAnalyzer",
    "get_reset_status",
]
