"""Recurrence arithmetic for scheduled queries."""

from datetime import datetime, timezone

import pytest

from feedback_assistant.services.recurrence import (
    SchedulingComputationError,
    compute_next_run,
    validate_recurrence,
)


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def test_daily_later_today():
    assert compute_next_run("daily", "09:00", now=_utc(2024, 1, 3, 8, 0)) == _utc(2024, 1, 3, 9, 0)


def test_daily_at_exact_time_moves_to_tomorrow():
    assert compute_next_run("daily", "09:00", now=_utc(2024, 1, 3, 9, 0)) == _utc(2024, 1, 4, 9, 0)


def test_weekly_wednesday_to_next_monday():
    # 2024-01-03 is a Wednesday; day_of_week 1 is Monday
    next_run = compute_next_run("weekly", "09:00", day_of_week=1, now=_utc(2024, 1, 3, 10, 0))
    assert next_run == _utc(2024, 1, 8, 9, 0)


def test_weekly_sunday_is_zero():
    next_run = compute_next_run("weekly", "18:30", day_of_week=0, now=_utc(2024, 1, 3, 10, 0))
    assert next_run == _utc(2024, 1, 7, 18, 30)


def test_weekly_same_day_before_time_runs_today():
    next_run = compute_next_run("weekly", "12:00", day_of_week=3, now=_utc(2024, 1, 3, 10, 0))
    assert next_run == _utc(2024, 1, 3, 12, 0)


def test_weekly_same_day_after_time_runs_next_week():
    next_run = compute_next_run("weekly", "09:00", day_of_week=3, now=_utc(2024, 1, 3, 10, 0))
    assert next_run == _utc(2024, 1, 10, 9, 0)


def test_monthly_day_31_clamps_to_short_month():
    next_run = compute_next_run("monthly", "09:00", day_of_month=31, now=_utc(2024, 4, 10, 12, 0))
    assert next_run == _utc(2024, 4, 30, 9, 0)


def test_monthly_day_31_rolls_into_leap_february():
    next_run = compute_next_run("monthly", "09:00", day_of_month=31, now=_utc(2024, 1, 31, 10, 0))
    assert next_run == _utc(2024, 2, 29, 9, 0)


def test_monthly_rolls_over_year_end():
    next_run = compute_next_run("monthly", "09:00", day_of_month=15, now=_utc(2024, 12, 20, 0, 0))
    assert next_run == _utc(2025, 1, 15, 9, 0)


def test_naive_now_is_treated_as_utc():
    next_run = compute_next_run("daily", "09:00", now=datetime(2024, 1, 3, 8, 0))
    assert next_run == _utc(2024, 1, 3, 9, 0)


def test_next_run_is_always_in_the_future():
    now = _utc(2024, 3, 31, 23, 59)
    for kwargs in ({"frequency": "daily"}, {"frequency": "weekly", "day_of_week": 0},
                   {"frequency": "monthly", "day_of_month": 31}):
        assert compute_next_run(time_utc="23:59", now=now, **kwargs) > now


def test_seconds_are_dropped():
    assert validate_recurrence("daily", "07:05:30").time_utc == "07:05"


@pytest.mark.parametrize(
    "frequency,time_utc,day_of_week,day_of_month",
    [
        ("weekly", "09:00", None, None),
        ("monthly", "09:00", None, None),
        ("daily", "09:00", 1, None),
        ("daily", "09:00", None, 5),
        ("weekly", "09:00", 7, None),
        ("monthly", "09:00", None, 32),
        ("monthly", "09:00", None, 0),
        ("daily", "25:00", None, None),
        ("daily", "9am", None, None),
        ("hourly", "09:00", None, None),
    ],
)
def test_invalid_recurrence_is_rejected(frequency, time_utc, day_of_week, day_of_month):
    with pytest.raises(SchedulingComputationError):
        validate_recurrence(frequency, time_utc, day_of_week, day_of_month)


def test_describe():
    assert validate_recurrence("weekly", "09:00", 1).describe() == "Weekly on Monday at 09:00 UTC"
