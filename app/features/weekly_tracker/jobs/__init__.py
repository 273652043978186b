"""
Background jobs for the weekly tracker feature.
"""

from .refresh_job import ActivityRefreshJob, ActivityRefreshJobError, RefreshState, RefreshStats
from .reset_job import WeeklyResetJob

__all__ = [
    "ActivityRefreshJob",
    "ActivityRefreshJobError",
    "RefreshState",
    "RefreshStats",
    "WeeklyResetJob",
]
