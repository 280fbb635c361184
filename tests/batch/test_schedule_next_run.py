"""
Tests for funding_batch.domain.schedule and AutomationSchedule.from_dict.

2026-01-01 is a Thursday.
"""

from datetime import datetime, timedelta, timezone

import pytest

from funding_batch.domain.schedule import compute_next_run, is_due
from funding_batch.domain.types import AutomationSchedule, ScheduleFrequency

UTC = timezone.utc


def _schedule(**kwargs) -> AutomationSchedule:
    return AutomationSchedule.from_dict(kwargs)


class TestDaily:
    def test_later_today(self):
        after = datetime(2026, 1, 1, 1, 0, tzinfo=UTC)
        assert compute_next_run(_schedule(frequency="daily"), after) == datetime(
            2026, 1, 1, 2, 0, tzinfo=UTC
        )

    def test_tomorrow_once_passed(self):
        after = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
        assert compute_next_run(_schedule(frequency="daily"), after) == datetime(
            2026, 1, 2, 2, 0, tzinfo=UTC
        )

    def test_strictly_after(self):
        after = datetime(2026, 1, 1, 2, 0, tzinfo=UTC)
        assert compute_next_run(_schedule(frequency="daily"), after) == datetime(
            2026, 1, 2, 2, 0, tzinfo=UTC
        )

    def test_local_time_in_schedule_timezone(self):
        # 12:00 UTC is 23:00 in Sydney (AEDT, +11)
        schedule = _schedule(frequency="daily", time_of_day="02:00", timezone="Australia/Sydney")
        result = compute_next_run(schedule, datetime(2026, 1, 1, 12, 0, tzinfo=UTC))
        assert result == datetime(2026, 1, 1, 15, 0, tzinfo=UTC)
        assert result.tzinfo == UTC


class TestWeekly:
    def test_sunday_is_zero(self):
        schedule = _schedule(frequency="weekly", day_of_week=0)
        result = compute_next_run(schedule, datetime(2026, 1, 1, 12, 0, tzinfo=UTC))
        assert result == datetime(2026, 1, 4, 2, 0, tzinfo=UTC)

    def test_same_weekday_already_passed(self):
        schedule = _schedule(frequency="weekly", day_of_week=4)
        result = compute_next_run(schedule, datetime(2026, 1, 1, 12, 0, tzinfo=UTC))
        assert result == datetime(2026, 1, 8, 2, 0, tzinfo=UTC)

    def test_same_weekday_still_ahead(self):
        schedule = _schedule(frequency="weekly", day_of_week=4, time_of_day="18:30")
        result = compute_next_run(schedule, datetime(2026, 1, 1, 12, 0, tzinfo=UTC))
        assert result == datetime(2026, 1, 1, 18, 30, tzinfo=UTC)


class TestMonthly:
    def test_later_this_month(self):
        schedule = _schedule(frequency="monthly", day_of_month=15)
        result = compute_next_run(schedule, datetime(2026, 1, 10, tzinfo=UTC))
        assert result == datetime(2026, 1, 15, 2, 0, tzinfo=UTC)

    def test_next_month(self):
        schedule = _schedule(frequency="monthly", day_of_month=15)
        result = compute_next_run(schedule, datetime(2026, 1, 20, tzinfo=UTC))
        assert result == datetime(2026, 2, 15, 2, 0, tzinfo=UTC)

    def test_day_clamped_to_short_month(self):
        schedule = _schedule(frequency="monthly", day_of_month=31)
        result = compute_next_run(schedule, datetime(2026, 4, 1, tzinfo=UTC))
        assert result == datetime(2026, 4, 30, 2, 0, tzinfo=UTC)

    def test_february_clamp_from_january(self):
        schedule = _schedule(frequency="monthly", day_of_month=31)
        result = compute_next_run(schedule, datetime(2026, 1, 31, 3, 0, tzinfo=UTC))
        assert result == datetime(2026, 2, 28, 2, 0, tzinfo=UTC)

    def test_year_rollover(self):
        schedule = _schedule(frequency="monthly", day_of_month=1)
        result = compute_next_run(schedule, datetime(2026, 12, 5, tzinfo=UTC))
        assert result == datetime(2027, 1, 1, 2, 0, tzinfo=UTC)


class TestInterval:
    def test_adds_minutes(self):
        schedule = _schedule(frequency="interval", interval_minutes=90)
        after = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
        assert compute_next_run(schedule, after) == after + timedelta(minutes=90)


class TestGuards:
    def test_naive_datetime_rejected(self):
        with pytest.raises(ValueError, match="aware"):
            compute_next_run(_schedule(frequency="daily"), datetime(2026, 1, 1))

    def test_is_due(self):
        now = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
        assert is_due(now, now)
        assert is_due(now - timedelta(seconds=1), now)
        assert not is_due(now + timedelta(seconds=1), now)
        assert not is_due(None, now)


class TestScheduleFromDict:
    def test_defaults(self):
        schedule = AutomationSchedule.from_dict({"frequency": "daily"}, "Australia/Sydney")
        assert schedule.frequency == ScheduleFrequency.DAILY
        assert schedule.time_of_day == "02:00"
        assert schedule.timezone == "Australia/Sydney"
        assert schedule.day_of_week == 1
        assert schedule.day_of_month == 1
        assert schedule.interval_minutes is None

    def test_interval_dropped_for_calendar_frequencies(self):
        schedule = AutomationSchedule.from_dict({"frequency": "weekly", "interval_minutes": 5})
        assert schedule.interval_minutes is None
        assert "interval_minutes" not in schedule.to_dict()

    @pytest.mark.parametrize(
        "data, message",
        [
            ({"frequency": "hourly"}, "frequency"),
            ({}, "frequency"),
            ({"frequency": "daily", "time_of_day": "25:00"}, "out of range"),
            ({"frequency": "daily", "time_of_day": "2pm"}, "HH:MM"),
            ({"frequency": "daily", "timezone": "Mars/Olympus_Mons"}, "timezone"),
            ({"frequency": "interval"}, "interval_minutes"),
            ({"frequency": "interval", "interval_minutes": 0}, "interval_minutes"),
            ({"frequency": "interval", "interval_minutes": True}, "interval_minutes"),
            ({"frequency": "weekly", "day_of_week": 7}, "day_of_week"),
            ({"frequency": "monthly", "day_of_month": 0}, "day_of_month"),
            ({"frequency": "monthly", "day_of_month": 32}, "day_of_month"),
        ],
    )
    def test_rejects(self, data, message):
        with pytest.raises(ValueError, match=message):
            AutomationSchedule.from_dict(data)
