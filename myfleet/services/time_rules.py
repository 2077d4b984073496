"""
Time rules: injectable clock, week windows and day iteration.
All scheduling is date-only; "today" is evaluated in the configured time zone.
"""
from datetime import datetime, date, timedelta
from enum import Enum
from typing import Iterator, Optional, Tuple
import pytz

from ..config import settings
from .errors import ValidationError


WEEKDAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

# Longest window a report may span
MAX_REPORT_DAYS = 366


class WeekStart(str, Enum):
    monday = "monday"
    sunday = "sunday"


class Clock:
    """Source of the current time. Services take one instead of calling datetime.now()."""

    def now(self) -> datetime:
        raise NotImplementedError

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    def __init__(self, timezone_str: Optional[str] = None):
        self.tz = pytz.timezone(timezone_str or settings.tz_default)

    def now(self) -> datetime:
        return datetime.now(pytz.UTC).astimezone(self.tz)


class FixedClock(Clock):
    def __init__(self, moment: datetime, timezone_str: Optional[str] = None):
        tz = pytz.timezone(timezone_str or settings.tz_default)
        if moment.tzinfo is None:
            moment = tz.localize(moment)
        self.moment = moment.astimezone(tz)

    def now(self) -> datetime:
        return self.moment


def get_clock() -> Clock:
    """FastAPI dependency; tests override it with a FixedClock."""
    return SystemClock()


def parse_week_start(value) -> WeekStart:
    try:
        return WeekStart(str(value).lower())
    except ValueError:
        raise ValidationError(f"week_start must be one of: {', '.join(w.value for w in WeekStart)}")


def week_bounds(anchor: date, week_start: WeekStart) -> Tuple[date, date]:
    """
    Return the inclusive [start, end] of the week containing anchor.

    Args:
        anchor: Any date inside the week
        week_start: monday or sunday

    Returns:
        (first_day, last_day), seven days apart minus one
    """
    if week_start == WeekStart.sunday:
        offset = (anchor.weekday() + 1) % 7
    else:
        offset = anchor.weekday()
    start = anchor - timedelta(days=offset)
    return start, start + timedelta(days=6)


def month_bounds(anchor: date) -> Tuple[date, date]:
    start = anchor.replace(day=1)
    if start.month == 12:
        next_month = start.replace(year=start.year + 1, month=1)
    else:
        next_month = start.replace(month=start.month + 1)
    return start, next_month - timedelta(days=1)


def resolve_window(
    start_date: Optional[date],
    end_date: Optional[date],
    anchor: Optional[date],
    week_start: WeekStart,
    clock: Clock,
) -> Tuple[date, date]:
    """
    Explicit start/end wins; otherwise the week around anchor (or today).
    A lone start_date produces a seven day window. Explicit ranges are
    capped at MAX_REPORT_DAYS.
    """
    if start_date and end_date:
        if end_date < start_date:
            raise ValidationError("end_date must be on or after start_date")
        if (end_date - start_date).days + 1 > MAX_REPORT_DAYS:
            raise ValidationError(f"Report window cannot exceed {MAX_REPORT_DAYS} days")
        return start_date, end_date
    if start_date:
        return start_date, start_date + timedelta(days=6)
    return week_bounds(anchor or clock.today(), week_start)


def date_range(start: date, end: date) -> Iterator[date]:
    day = start
    while day <= end:
        yield day
        day += timedelta(days=1)


def weekday_name(day: date) -> str:
    return WEEKDAY_NAMES[day.weekday()]


def clip_range(start: date, end: date, window_start: date, window_end: date) -> Optional[Tuple[date, date]]:
    """Intersect [start, end] with the window; None when they do not overlap."""
    lo = max(start, window_start)
    hi = min(end, window_end)
    if lo > hi:
        return None
    return lo, hi
