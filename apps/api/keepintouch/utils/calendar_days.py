"""Calendar helpers for touch scheduling.

Touches are scheduled on calendar dates in the configured timezone
(settings.KIT_TIMEZONE). Instants are stored and compared in UTC.
"""

from datetime import date, datetime, timedelta, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo

from keepintouch.core.config import settings
from keepintouch.core.constants import REST_DAYS


@lru_cache(maxsize=10)
def _zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def as_utc(dt: datetime) -> datetime:
    """Treat naive datetimes (e.g. read back from SQLite) as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_local(dt: datetime, tz_name: str | None = None) -> datetime:
    """Convert an instant to the scheduling timezone."""
    return as_utc(dt).astimezone(_zone(tz_name or settings.KIT_TIMEZONE))


def local_today(now: datetime | None = None, tz_name: str | None = None) -> date:
    """Calendar date of `now` (default: current time) in the scheduling timezone."""
    return to_local(now or datetime.now(timezone.utc), tz_name).date()


def is_rest_day(day: date, rest_days: frozenset[int] = REST_DAYS) -> bool:
    """Check if date falls on a rest day (weekday numbers, Monday=0)."""
    return day.weekday() in rest_days


def next_working_day(day: date, rest_days: frozenset[int] = REST_DAYS) -> date:
    """Return `day` itself, or the first following day that is not a rest day."""
    if len(rest_days) >= 7:
        raise ValueError("At least one weekday must be a working day")
    while is_rest_day(day, rest_days):
        day += timedelta(days=1)
    return day
