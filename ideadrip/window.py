"""
Weekly window matching.

A user is due when, on their own wall clock, it is the scheduled weekday and
the minute-of-day is within WINDOW_MINUTES of the scheduled HH:MM.

The day check is exact and the minute check is a plain absolute difference,
so a 23:58 slot is NOT matched by a run that lands at 00:02 the next local
day. Keep it that way unless matching moves to circular time-of-week.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import InvalidScheduleError
from .models import SlotKey, UserSchedule, Weekday

WINDOW_MINUTES = 5


def parse_hhmm(raw: str) -> int:
    """Parse "HH:MM" into minute-of-day. Raises ValueError on anything else."""
    parts = (raw or "").strip().split(":")
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        raise ValueError(f"expected HH:MM, got {raw!r}")
    hours, minutes = int(parts[0]), int(parts[1])
    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        raise ValueError(f"time out of range: {raw!r}")
    return hours * 60 + minutes


def _zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError) as exc:
        raise InvalidScheduleError(f"unknown timezone {name!r}") from exc


def to_local(now: datetime, timezone: str) -> datetime:
    if now.tzinfo is None or now.utcoffset() is None:
        raise ValueError("run instant must be timezone-aware")
    return now.astimezone(_zone(timezone))


def local_position(now: datetime, schedule: UserSchedule) -> Tuple[Weekday, int, datetime]:
    """(local weekday, local minute-of-day, local datetime) for this schedule's zone."""
    local = to_local(now, schedule.timezone)
    return Weekday.of(local.date()), local.hour * 60 + local.minute, local


def minutes_off(now: datetime, schedule: UserSchedule) -> Optional[int]:
    """
    Distance in minutes from the scheduled time, or None on the wrong day.
    """
    day, minute, _ = local_position(now, schedule)
    if day is not schedule.day:
        return None
    try:
        scheduled = parse_hhmm(schedule.time)
    except ValueError as exc:
        raise InvalidScheduleError(str(exc)) from exc
    return abs(scheduled - minute)


def is_due(now: datetime, schedule: UserSchedule, tolerance_minutes: int = WINDOW_MINUTES) -> bool:
    delta = minutes_off(now, schedule)
    return delta is not None and delta <= tolerance_minutes


def slot_for(user_id: str, now: datetime, schedule: UserSchedule) -> SlotKey:
    _, _, local = local_position(now, schedule)
    return SlotKey(user_id=user_id, local_date=local.date(), slot_time=schedule.time)


def describe(schedule: UserSchedule) -> str:
    return f"{schedule.day.value.capitalize()}s at {schedule.time} ({schedule.timezone})"
