"""
Weekly reset clock.

Pure functions computing reset boundaries from an explicit ``now``. Nothing
here is cached: every evaluation recomputes its boundary so results never
drift across the reset instant.
"""

from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta

import pytz
from pydantic import BaseModel

WEEK = timedelta(days=7)
DEFAULT_RESET_WINDOW = timedelta(hours=1)


@dataclass(frozen=True, slots=True)
class ResetSchedule:
    """Weekly anchor: a weekday (Monday=0) and a UTC time of day."""

    weekday: int = 1
    hour: int = 10
    minute: int = 0

    def __post_init__(self) -> None:
        if not 0 <= self.weekday <= 6:
            raise ValueError(f"weekday must be 0-6, got {self.weekday}")
        if not 0 <= self.hour <= 23:
            raise ValueError(f"hour must be 0-23, got {self.hour}")
        if not 0 <= self.minute <= 59:
            raise ValueError(f"minute must be 0-59, got {self.minute}")


DEFAULT_SCHEDULE = ResetSchedule()


class ResetStatus(BaseModel):
    is_reset_time: bool
    last_reset: datetime
    next_reset: datetime
    time_until_reset: str


def utc_now() -> datetime:
    return datetime.now(UTC)


def to_utc(now: datetime | None) -> datetime:
    """Normalize an instant to aware UTC; None means the current time."""
    if now is None:
        return utc_now()
    if now.tzinfo is None:
        # Naive instants are taken to be UTC
        return now.replace(tzinfo=UTC)
    return now.astimezone(UTC)


def current_reset_boundary(
    now: datetime | None = None, schedule: ResetSchedule = DEFAULT_SCHEDULE
) -> datetime:
    """Most recent reset at or before ``now`` (the boundary instant itself is inclusive)."""
    now = to_utc(now)
    days_since_anchor = (now.weekday() - schedule.weekday + 7) % 7
    boundary = (now - timedelta(days=days_since_anchor)).replace(
        hour=schedule.hour, minute=schedule.minute, second=0, microsecond=0
    )
    # Anchor weekday but before the anchor time: this week's reset has not happened yet
    if boundary > now:
        boundary -= WEEK
    return boundary


def previous_reset_boundary(
    now: datetime | None = None, schedule: ResetSchedule = DEFAULT_SCHEDULE
) -> datetime:
    return current_reset_boundary(now, schedule) - WEEK


def next_reset_boundary(
    now: datetime | None = None, schedule: ResetSchedule = DEFAULT_SCHEDULE
) -> datetime:
    return current_reset_boundary(now, schedule) + WEEK


def is_past_reset_since_last_check(
    last_checked_boundary: datetime | None,
    now: datetime | None = None,
    schedule: ResetSchedule = DEFAULT_SCHEDULE,
) -> bool:
    """True when a reset boundary newer than the last reconciled one has passed."""
    if last_checked_boundary is None:
        return True
    return current_reset_boundary(now, schedule) > to_utc(last_checked_boundary)


def is_reset_window(
    now: datetime | None = None,
    schedule: ResetSchedule = DEFAULT_SCHEDULE,
    window: timedelta = DEFAULT_RESET_WINDOW,
) -> bool:
    """True during the first ``window`` after the current boundary."""
    now = to_utc(now)
    return now - current_reset_boundary(now, schedule) < window


def format_remaining(remaining: timedelta) -> str:
    """Render a duration as ``"2d 5h 13m"``, dropping zero parts; ``"0m"`` when nothing is left."""
    total_minutes = max(int(remaining.total_seconds() // 60), 0)
    days, rest = divmod(total_minutes, 24 * 60)
    hours, minutes = divmod(rest, 60)

    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    return " ".join(parts) or "0m"


def get_reset_status(
    now: datetime | None = None,
    schedule: ResetSchedule = DEFAULT_SCHEDULE,
    window: timedelta = DEFAULT_RESET_WINDOW,
) -> ResetStatus:
    """Read-only projection of the clock for status reporting."""
    now = to_utc(now)
    last_reset = current_reset_boundary(now, schedule)
    next_reset = last_reset + WEEK
    return ResetStatus(
        is_reset_time=is_reset_window(now, schedule, window),
        last_reset=last_reset,
        next_reset=next_reset,
        time_until_reset=format_remaining(next_reset - now),
    )


# Daily boundaries (seasonal events) ------------------------------------------


def local_date(now: datetime | None, timezone_name: str) -> date:
    """Calendar date of ``now`` in the given timezone."""
    return to_utc(now).astimezone(pytz.timezone(timezone_name)).date()


def daily_boundary(
    now: datetime | None = None, hour: int = 0, timezone_name: str = "UTC"
) -> datetime:
    """Most recent local ``hour:00`` in ``timezone_name`` at or before ``now``, returned in UTC."""
    now = to_utc(now)
    tz = pytz.timezone(timezone_name)
    local_day = now.astimezone(tz).date()

    boundary = tz.localize(datetime.combine(local_day, time(hour=hour)))
    if boundary > now:
        boundary = tz.localize(datetime.combine(local_day - timedelta(days=1), time(hour=hour)))
    return boundary.astimezone(UTC)
