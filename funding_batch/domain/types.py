"""
funding_batch.domain.types -- Pure frozen dataclasses for the scheduler.

ZERO I/O.  Enum status fields, tuples for immutable collections.

``AutomationSchedule.from_dict`` is the single place a stored or submitted
schedule mapping is checked; everything downstream may assume a valid one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


# =============================================================================
# Enums
# =============================================================================


class AutomationType(str, Enum):
    """Registered runner keys."""

    CONTRACT_BILLING_RUN = "contract_billing_run"
    RECURRING_TRANSACTION = "recurring_transaction"
    CONTRACT_EXPIRY = "contract_expiry"


class AutomationRunStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class ScheduleFrequency(str, Enum):
    INTERVAL = "interval"  # every interval_minutes
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


# =============================================================================
# Schedule
# =============================================================================

DEFAULT_TIME_OF_DAY = "02:00"
DEFAULT_DAY_OF_WEEK = 1  # Monday, Sunday = 0
DEFAULT_DAY_OF_MONTH = 1


@dataclass(frozen=True)
class AutomationSchedule:
    """When an automation fires.

    ``day_of_week`` uses Sunday = 0 ... Saturday = 6.  ``day_of_month`` is
    clamped to the month's length when evaluated (31 fires on the 30th in
    April).  ``time_of_day`` is wall-clock time in ``timezone``.
    """

    frequency: ScheduleFrequency
    time_of_day: str = DEFAULT_TIME_OF_DAY
    timezone: str = "UTC"
    interval_minutes: int | None = None
    day_of_week: int = DEFAULT_DAY_OF_WEEK
    day_of_month: int = DEFAULT_DAY_OF_MONTH

    @property
    def hour(self) -> int:
        return int(self.time_of_day.split(":")[0])

    @property
    def minute(self) -> int:
        return int(self.time_of_day.split(":")[1])

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @classmethod
    def from_dict(
        cls, data: Mapping[str, Any], default_timezone: str = "UTC",
    ) -> AutomationSchedule:
        """Build a schedule from a stored/submitted mapping.

        Raises:
            ValueError: Unknown frequency, malformed time, unknown timezone,
                or an out-of-range day.
        """
        try:
            frequency = ScheduleFrequency(data.get("frequency"))
        except ValueError:
            allowed = ", ".join(f.value for f in ScheduleFrequency)
            raise ValueError(f"frequency must be one of {allowed}") from None

        time_of_day = data.get("time_of_day") or DEFAULT_TIME_OF_DAY
        _check_time_of_day(time_of_day)

        timezone = data.get("timezone") or default_timezone
        try:
            ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"unknown timezone: {timezone!r}") from None

        interval = data.get("interval_minutes")
        if frequency == ScheduleFrequency.INTERVAL:
            if not isinstance(interval, int) or isinstance(interval, bool) or interval <= 0:
                raise ValueError("interval_minutes must be a positive integer")
        else:
            interval = None

        day_of_week = data.get("day_of_week", DEFAULT_DAY_OF_WEEK)
        if day_of_week is None:
            day_of_week = DEFAULT_DAY_OF_WEEK
        if not isinstance(day_of_week, int) or not 0 <= day_of_week <= 6:
            raise ValueError("day_of_week must be 0-6 (Sunday = 0)")

        day_of_month = data.get("day_of_month", DEFAULT_DAY_OF_MONTH)
        if day_of_month is None:
            day_of_month = DEFAULT_DAY_OF_MONTH
        if not isinstance(day_of_month, int) or not 1 <= day_of_month <= 31:
            raise ValueError("day_of_month must be 1-31")

        return cls(
            frequency=frequency,
            time_of_day=time_of_day,
            timezone=timezone,
            interval_minutes=interval,
            day_of_week=day_of_week,
            day_of_month=day_of_month,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "frequency": self.frequency.value,
            "time_of_day": self.time_of_day,
            "timezone": self.timezone,
            "day_of_week": self.day_of_week,
            "day_of_month": self.day_of_month,
        }
        if self.interval_minutes is not None:
            data["interval_minutes"] = self.interval_minutes
        return data


def _check_time_of_day(value: Any) -> None:
    if not isinstance(value, str):
        raise ValueError("time_of_day must be a string 'HH:MM'")
    parts = value.split(":")
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        raise ValueError(f"time_of_day must be 'HH:MM', got {value!r}")
    hour, minute = int(parts[0]), int(parts[1])
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"time_of_day out of range: {value!r}")


# =============================================================================
# Automation DTOs
# =============================================================================


@dataclass(frozen=True)
class AutomationInfo:
    """Immutable snapshot of an automation."""

    id: UUID
    name: str
    automation_type: AutomationType
    schedule: AutomationSchedule
    is_enabled: bool = True
    organization_id: UUID | None = None
    description: str | None = None
    parameters: dict[str, Any] = field(default_factory=dict)
    last_run_at: datetime | None = None
    last_run_status: AutomationRunStatus | None = None
    next_run_at: datetime | None = None


@dataclass(frozen=True)
class AutomationRunInfo:
    """One recorded scheduler invocation of one automation."""

    id: UUID
    automation_id: UUID
    status: AutomationRunStatus
    started_at: datetime
    finished_at: datetime | None = None
    summary: str | None = None
    metrics: dict[str, Any] = field(default_factory=dict)
    error: dict[str, Any] | None = None


# =============================================================================
# Runner / tick results
# =============================================================================


@dataclass(frozen=True)
class RunnerOutcome:
    """What a runner reports back to the scheduler."""

    success: bool
    summary: str
    metrics: dict[str, Any] = field(default_factory=dict)
    error: str | None = None


@dataclass(frozen=True)
class AutomationOutcome:
    """Per-automation entry in a tick result."""

    automation_id: UUID
    name: str
    success: bool
    summary: str
    run_id: UUID | None = None


@dataclass(frozen=True)
class SchedulerTickResult:
    processed: int
    results: tuple[AutomationOutcome, ...] = ()
    message: str | None = None

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)
