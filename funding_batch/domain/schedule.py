"""
Pure schedule evaluation.

Contract:
    ``compute_next_run(schedule, after)`` returns the first instant strictly
    after ``after`` at which the schedule fires, as an aware UTC datetime.
    Calendar rules are evaluated in the schedule's own timezone so "02:00
    daily" stays 02:00 local across DST changes.

Architecture: funding_batch/domain.  ZERO I/O; callers supply the time.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, time, timedelta, timezone

from funding_batch.domain.types import AutomationSchedule, ScheduleFrequency


def _at(day: date, schedule: AutomationSchedule) -> datetime:
    return datetime.combine(day, time(schedule.hour, schedule.minute), tzinfo=schedule.zone)


def _clamped(year: int, month: int, day_of_month: int) -> date:
    return date(year, month, min(day_of_month, calendar.monthrange(year, month)[1]))


def compute_next_run(schedule: AutomationSchedule, after: datetime) -> datetime:
    """First firing instant strictly after ``after``.

    Raises:
        ValueError: ``after`` is naive.
    """
    if after.tzinfo is None:
        raise ValueError("compute_next_run requires an aware datetime")

    if schedule.frequency == ScheduleFrequency.INTERVAL:
        return (after + timedelta(minutes=schedule.interval_minutes)).astimezone(timezone.utc)

    local = after.astimezone(schedule.zone)
    today = local.date()

    if schedule.frequency == ScheduleFrequency.DAILY:
        candidate = _at(today, schedule)
        if candidate <= local:
            candidate = _at(today + timedelta(days=1), schedule)

    elif schedule.frequency == ScheduleFrequency.WEEKLY:
        # date.weekday() is Monday = 0; schedules use Sunday = 0
        current = (today.weekday() + 1) % 7
        days_until = (schedule.day_of_week - current) % 7
        candidate = _at(today + timedelta(days=days_until), schedule)
        if candidate <= local:
            candidate = _at(today + timedelta(days=days_until + 7), schedule)

    else:
        candidate = _at(_clamped(today.year, today.month, schedule.day_of_month), schedule)
        if candidate <= local:
            year, month = (today.year + 1, 1) if today.month == 12 else (today.year, today.month + 1)
            candidate = _at(_clamped(year, month, schedule.day_of_month), schedule)

    return candidate.astimezone(timezone.utc)


def is_due(next_run_at: datetime | None, now: datetime) -> bool:
    """An enabled automation with no next_run_at never fires on its own."""
    return next_run_at is not None and next_run_at <= now
