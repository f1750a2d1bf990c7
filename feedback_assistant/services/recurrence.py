"""Recurrence arithmetic for scheduled queries.

All instants are UTC. `day_of_week` follows the 0=Sunday..6=Saturday
convention used by the API; Python's Monday-based weekday is converted here
and nowhere else.
"""

from __future__ import annotations

import calendar
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone

from feedback_assistant.db.enums import Frequency

_TIME_RE = re.compile(r"^(\d{2}):(\d{2})(?::(\d{2}))?$")
DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


class SchedulingComputationError(Exception):
    """Recurrence parameters are malformed."""

    pass


@dataclass(frozen=True)
class Recurrence:
    """A validated recurrence rule."""

    frequency: Frequency
    time_utc: str
    day_of_week: int | None = None
    day_of_month: int | None = None

    def next_after(self, now: datetime | None = None) -> datetime:
        return compute_next_run(
            self.frequency,
            self.time_utc,
            day_of_week=self.day_of_week,
            day_of_month=self.day_of_month,
            now=now,
        )

    def describe(self) -> str:
        if self.frequency == Frequency.WEEKLY:
            return f"Weekly on {DAY_NAMES[self.day_of_week or 0]} at {self.time_utc} UTC"
        if self.frequency == Frequency.MONTHLY:
            return f"Monthly on day {self.day_of_month} at {self.time_utc} UTC"
        return f"Daily at {self.time_utc} UTC"


def parse_time_utc(value: str) -> time:
    """Parse "HH:MM" (or "HH:MM:SS") into a time; seconds are dropped."""
    if not isinstance(value, str):
        raise SchedulingComputationError("time_utc must be a string in HH:MM format")
    match = _TIME_RE.match(value.strip())
    if not match:
        raise SchedulingComputationError(f"Invalid time_utc '{value}', expected HH:MM")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise SchedulingComputationError(f"Invalid time_utc '{value}', expected HH:MM")
    return time(hour, minute)


def validate_recurrence(
    frequency: Frequency | str,
    time_utc: str,
    day_of_week: int | None = None,
    day_of_month: int | None = None,
) -> Recurrence:
    """
    Validate recurrence parameters.

    day_of_week is required iff weekly and day_of_month iff monthly.
    Nothing is defaulted: a missing or stray field is an error.
    """
    try:
        freq = Frequency(frequency)
    except ValueError:
        raise SchedulingComputationError(f"Unknown frequency '{frequency}'")

    parsed = parse_time_utc(time_utc)

    if freq == Frequency.WEEKLY:
        if day_of_week is None:
            raise SchedulingComputationError("day_of_week is required for weekly schedules")
        if isinstance(day_of_week, bool) or not isinstance(day_of_week, int) or not 0 <= day_of_week <= 6:
            raise SchedulingComputationError("day_of_week must be between 0 (Sunday) and 6 (Saturday)")
    elif day_of_week is not None:
        raise SchedulingComputationError("day_of_week is only valid for weekly schedules")

    if freq == Frequency.MONTHLY:
        if day_of_month is None:
            raise SchedulingComputationError("day_of_month is required for monthly schedules")
        if isinstance(day_of_month, bool) or not isinstance(day_of_month, int) or not 1 <= day_of_month <= 31:
            raise SchedulingComputationError("day_of_month must be between 1 and 31")
    elif day_of_month is not None:
        raise SchedulingComputationError("day_of_month is only valid for monthly schedules")

    return Recurrence(
        frequency=freq,
        time_utc=parsed.strftime("%H:%M"),
        day_of_week=day_of_week,
        day_of_month=day_of_month,
    )


def _as_utc(value: datetime | None) -> datetime:
    if value is None:
        return datetime.now(timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _at(day: date, at: time) -> datetime:
    return datetime.combine(day, at, tzinfo=timezone.utc)


def _clamped_day(year: int, month: int, day_of_month: int) -> date:
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day_of_month, last_day))


def compute_next_run(
    frequency: Frequency | str,
    time_utc: str,
    *,
    day_of_week: int | None = None,
    day_of_month: int | None = None,
    now: datetime | None = None,
) -> datetime:
    """
    Return the next UTC instant strictly after `now` matching the rule.

    - daily: today at time_utc if still ahead, else tomorrow
    - weekly: the next day_of_week (0=Sunday) at time_utc
    - monthly: day_of_month of this month if ahead, else next month,
      clamped to the last day of shorter months (31 -> 30, 29 or 28)

    Raises:
        SchedulingComputationError: malformed parameters
    """
    rule = validate_recurrence(frequency, time_utc, day_of_week, day_of_month)
    current = _as_utc(now)
    at = parse_time_utc(rule.time_utc)
    today = current.date()

    if rule.frequency == Frequency.DAILY:
        candidate = _at(today, at)
        if candidate <= current:
            candidate += timedelta(days=1)
        return candidate

    if rule.frequency == Frequency.WEEKLY:
        assert rule.day_of_week is not None
        target_weekday = (rule.day_of_week - 1) % 7  # Sunday=0 -> Python's 6
        days_ahead = (target_weekday - today.weekday()) % 7
        candidate = _at(today + timedelta(days=days_ahead), at)
        if candidate <= current:
            candidate += timedelta(days=7)
        return candidate

    assert rule.day_of_month is not None
    candidate = _at(_clamped_day(today.year, today.month, rule.day_of_month), at)
    if candidate <= current:
        year, month = (today.year + 1, 1) if today.month == 12 else (today.year, today.month + 1)
        candidate = _at(_clamped_day(year, month, rule.day_of_month), at)
    return candidate
