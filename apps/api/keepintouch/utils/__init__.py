"""Utility modules."""

from keepintouch.utils.calendar_days import (
    as_utc,
    is_rest_day,
    local_today,
    next_working_day,
    to_local,
)

__all__ = [
    "as_utc",
    "is_rest_day",
    "local_today",
    "next_working_day",
    "to_local",
]
