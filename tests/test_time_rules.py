from datetime import date, datetime

import pytest
import pytz

from myfleet.services.errors import ValidationError
from myfleet.services.time_rules import (
    FixedClock,
    WeekStart,
    clip_range,
    date_range,
    month_bounds,
    parse_week_start,
    resolve_window,
    week_bounds,
    weekday_name,
)


def test_week_bounds_monday_start():
    # 2025-01-08 is a Wednesday
    assert week_bounds(date(2025, 1, 8), WeekStart.monday) == (date(2025, 1, 6), date(2025, 1, 12))


def test_week_bounds_sunday_start():
    assert week_bounds(date(2025, 1, 8), WeekStart.sunday) == (date(2025, 1, 5), date(2025, 1, 11))


def test_week_bounds_on_the_start_day_itself():
    assert week_bounds(date(2025, 1, 5), WeekStart.sunday)[0] == date(2025, 1, 5)
    assert week_bounds(date(2025, 1, 6), WeekStart.monday)[0] == date(2025, 1, 6)


def test_month_bounds_handles_december():
    assert month_bounds(date(2024, 12, 15)) == (date(2024, 12, 1), date(2024, 12, 31))
    assert month_bounds(date(2024, 2, 10)) == (date(2024, 2, 1), date(2024, 2, 29))


def test_parse_week_start_rejects_unknown_values():
    assert parse_week_start("Sunday") == WeekStart.sunday
    with pytest.raises(ValidationError):
        parse_week_start("friday")


def test_resolve_window_prefers_explicit_range():
    clock = FixedClock(datetime(2025, 1, 8, 9, 0))
    window = resolve_window(date(2025, 1, 1), date(2025, 1, 3), None, WeekStart.monday, clock)
    assert window == (date(2025, 1, 1), date(2025, 1, 3))


def test_resolve_window_lone_start_gives_seven_days():
    clock = FixedClock(datetime(2025, 1, 8, 9, 0))
    assert resolve_window(date(2025, 1, 1), None, None, WeekStart.monday, clock) == (date(2025, 1, 1), date(2025, 1, 7))


def test_resolve_window_defaults_to_current_week():
    clock = FixedClock(datetime(2025, 1, 8, 9, 0))
    assert resolve_window(None, None, None, WeekStart.sunday, clock) == (date(2025, 1, 5), date(2025, 1, 11))
    assert resolve_window(None, None, date(2025, 2, 1), WeekStart.monday, clock) == (date(2025, 1, 27), date(2025, 2, 2))


def test_resolve_window_rejects_inverted_range():
    clock = FixedClock(datetime(2025, 1, 8, 9, 0))
    with pytest.raises(ValidationError):
        resolve_window(date(2025, 1, 5), date(2025, 1, 1), None, WeekStart.monday, clock)


def test_resolve_window_caps_explicit_range():
    clock = FixedClock(datetime(2025, 1, 8, 9, 0))
    # 2024 is a leap year: 366 days is the longest window allowed
    assert resolve_window(date(2024, 1, 1), date(2024, 12, 31), None, WeekStart.monday, clock)[1] == date(2024, 12, 31)
    with pytest.raises(ValidationError):
        resolve_window(date(2024, 1, 1), date(2025, 1, 1), None, WeekStart.monday, clock)


def test_fixed_clock_today_uses_configured_zone():
    # London is UTC+1 in July, so 23:30 UTC is already the next day
    clock = FixedClock(datetime(2025, 1, 7, 23, 30))
    assert clock.today() == date(2025, 1, 7)
    summer = FixedClock(datetime(2025, 7, 7, 23, 30, tzinfo=pytz.UTC))
    assert summer.today() == date(2025, 7, 8)


def test_date_helpers():
    assert list(date_range(date(2025, 1, 30), date(2025, 2, 2))) == [
        date(2025, 1, 30), date(2025, 1, 31), date(2025, 2, 1), date(2025, 2, 2),
    ]
    assert list(date_range(date(2025, 1, 2), date(2025, 1, 1))) == []
    assert weekday_name(date(2025, 1, 6)) == "monday"
    assert clip_range(date(2025, 1, 1), date(2025, 1, 10), date(2025, 1, 5), date(2025, 1, 7)) == (
        date(2025, 1, 5), date(2025, 1, 7),
    )
    assert clip_range(date(2025, 1, 1), date(2025, 1, 2), date(2025, 1, 5), date(2025, 1, 7)) is None
