"""
ORM models for the billing automation scheduler.

Contract:
    AutomationModel persists what to run and when; AutomationRunModel is one
    record per scheduler invocation of one automation.  Each has
    ``to_dto()``; AutomationModel also has ``from_dto()``.

Architecture: funding_batch/models.  Imports from funding_kernel.db.base only
    (plus the batch domain types for DTO conversion).

Invariants enforced:
    - ``schedule`` is stored as the mapping produced by
      ``AutomationSchedule.to_dict()`` and re-validated on read.
    - Runs are observational: nothing in the billing path reads them back.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from funding_batch.domain.types import (
    AutomationInfo,
    AutomationRunInfo,
    AutomationRunStatus,
    AutomationSchedule,
    AutomationType,
)
from funding_kernel.db.base import TrackedBase, UUIDString


class AutomationModel(TrackedBase):
    """A scheduled automation (billing run, recurring transaction, expiry sweep)."""

    __tablename__ = "automations"

    __table_args__ = (
        Index("ix_automations_due", "is_enabled", "next_run_at"),
        Index("ix_automations_organization", "organization_id"),
    )

    organization_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    automation_type: Mapped[str] = mapped_column(String(50), nullable=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    schedule: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    parameters: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    last_run_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_run_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    next_run_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def schedule_spec(self, default_timezone: str = "UTC") -> AutomationSchedule:
        return AutomationSchedule.from_dict(self.schedule or {}, default_timezone)

    def to_dto(self, default_timezone: str = "UTC") -> AutomationInfo:
        return AutomationInfo(
            id=self.id,
            organization_id=self.organization_id,
            name=self.name,
            description=self.description,
            automation_type=AutomationType(self.automation_type),
            is_enabled=self.is_enabled,
            schedule=self.schedule_spec(default_timezone),
            parameters=dict(self.parameters or {}),
            last_run_at=self.last_run_at,
            last_run_status=(
                AutomationRunStatus(self.last_run_status) if self.last_run_status else None
            ),
            next_run_at=self.next_run_at,
        )

    @classmethod
    def from_dto(cls, dto: AutomationInfo, created_by: str) -> AutomationModel:
        return cls(
            id=dto.id,
            organization_id=dto.organization_id,
            name=dto.name,
            description=dto.description,
            automation_type=dto.automation_type.value,
            is_enabled=dto.is_enabled,
            schedule=dto.schedule.to_dict(),
            parameters=dict(dto.parameters) or None,
            last_run_at=dto.last_run_at,
            last_run_status=dto.last_run_status.value if dto.last_run_status else None,
            next_run_at=dto.next_run_at,
            created_by=created_by,
            updated_by=None,
        )


class AutomationRunModel(TrackedBase):
    """One scheduler invocation of one automation."""

    __tablename__ = "automation_runs"

    __table_args__ = (
        Index("ix_automation_runs_automation_started", "automation_id", "started_at"),
    )

    automation_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("automations.id", ondelete="CASCADE"),
        nullable=False,
    )
    organization_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    started_at: Mapped[datetime] = mapped_column(nullable=False)
    finished_at: Mapped[datetime | None] = mapped_column(nullable=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    metrics: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    error: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    def to_dto(self) -> AutomationRunInfo:
        return AutomationRunInfo(
            id=self.id,
            automation_id=self.automation_id,
            status=AutomationRunStatus(self.status),
            started_at=self.started_at,
            finished_at=self.finished_at,
            summary=self.summary,
            metrics=dict(self.metrics or {}),
            error=self.error,
        )
