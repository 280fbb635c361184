"""
AutomationService -- create and manage automations.

Contract:
    Flush-only, like the kernel services: the caller's session scope
    commits.  Every change to the schedule or the enabled flag recomputes
    ``next_run_at`` from the injected clock.

Failure modes:
    - ValidationError for an unknown automation type or a bad schedule.
    - AutomationNotFoundError for unknown ids.
    - InvalidTransitionError when triggering a disabled automation.
"""

from __future__ import annotations

from typing import Any, Mapping
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from funding_batch.domain.schedule import compute_next_run
from funding_batch.domain.types import (
    AutomationInfo,
    AutomationRunInfo,
    AutomationSchedule,
    AutomationType,
)
from funding_batch.models.automation import AutomationModel, AutomationRunModel
from funding_kernel.domain.clock import Clock, SystemClock
from funding_kernel.domain.validation import ValidationIssue
from funding_kernel.exceptions import (
    AutomationNotFoundError,
    InvalidTransitionError,
    ValidationError,
)
from funding_kernel.logging_config import get_logger

logger = get_logger("batch.automations")


class AutomationService:
    """CRUD and scheduling controls for automations."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        default_timezone: str = "UTC",
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._default_timezone = default_timezone

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _parse_schedule(self, schedule: Mapping[str, Any] | AutomationSchedule) -> AutomationSchedule:
        if isinstance(schedule, AutomationSchedule):
            return schedule
        try:
            return AutomationSchedule.from_dict(schedule, self._default_timezone)
        except ValueError as exc:
            raise ValidationError((ValidationIssue("schedule", str(exc), "invalid_schedule"),)) from exc

    def _get(self, automation_id: UUID) -> AutomationModel:
        model = self._session.get(AutomationModel, automation_id)
        if model is None:
            raise AutomationNotFoundError(automation_id)
        return model

    def _touch(self, model: AutomationModel, actor: str) -> None:
        model.updated_at = self._clock.now()
        model.updated_by = actor

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def create_automation(
        self,
        name: str,
        automation_type: AutomationType | str,
        schedule: Mapping[str, Any] | AutomationSchedule,
        actor: str,
        organization_id: UUID | None = None,
        parameters: Mapping[str, Any] | None = None,
        description: str | None = None,
        is_enabled: bool = True,
    ) -> AutomationInfo:
        """Create an automation and compute its first ``next_run_at``."""
        issues = []
        if not name or not name.strip():
            issues.append(ValidationIssue("name", "is required", "required"))
        try:
            kind = AutomationType(automation_type)
        except ValueError:
            allowed = ", ".join(t.value for t in AutomationType)
            issues.append(
                ValidationIssue("automation_type", f"must be one of {allowed}", "invalid_choice")
            )
        if issues:
            raise ValidationError(tuple(issues))
        spec = self._parse_schedule(schedule)

        now = self._clock.now()
        dto = AutomationInfo(
            id=uuid4(),
            organization_id=organization_id,
            name=name.strip(),
            description=description,
            automation_type=kind,
            is_enabled=is_enabled,
            schedule=spec,
            parameters=dict(parameters or {}),
            next_run_at=compute_next_run(spec, now) if is_enabled else None,
        )
        model = AutomationModel.from_dto(dto, created_by=actor)
        model.created_at = now
        model.updated_at = now
        self._session.add(model)
        self._session.flush()

        logger.info(
            "automation_created",
            extra={
                "automation_id": str(dto.id),
                "automation_type": kind.value,
                "next_run_at": dto.next_run_at,
                "actor": actor,
            },
        )
        return model.to_dto(self._default_timezone)

    def set_enabled(self, automation_id: UUID, enabled: bool, actor: str) -> AutomationInfo:
        """Enable (scheduling the next run from now) or disable an automation."""
        model = self._get(automation_id)
        model.is_enabled = enabled
        model.next_run_at = (
            compute_next_run(model.schedule_spec(self._default_timezone), self._clock.now())
            if enabled else None
        )
        self._touch(model, actor)
        self._session.flush()
        logger.info(
            "automation_enabled_changed",
            extra={"automation_id": str(model.id), "enabled": enabled, "actor": actor},
        )
        return model.to_dto(self._default_timezone)

    def update_schedule(
        self, automation_id: UUID, changes: Mapping[str, Any], actor: str,
    ) -> AutomationInfo:
        """Merge ``changes`` into the stored schedule and reschedule."""
        model = self._get(automation_id)
        merged = {**(model.schedule or {}), **changes}
        spec = self._parse_schedule(merged)
        model.schedule = spec.to_dict()
        if model.is_enabled:
            model.next_run_at = compute_next_run(spec, self._clock.now())
        self._touch(model, actor)
        self._session.flush()
        logger.info(
            "automation_schedule_updated",
            extra={"automation_id": str(model.id), "next_run_at": model.next_run_at, "actor": actor},
        )
        return model.to_dto(self._default_timezone)

    def update_parameters(
        self, automation_id: UUID, changes: Mapping[str, Any], actor: str,
    ) -> AutomationInfo:
        model = self._get(automation_id)
        model.parameters = {**(model.parameters or {}), **changes}
        self._touch(model, actor)
        self._session.flush()
        return model.to_dto(self._default_timezone)

    def trigger_now(self, automation_id: UUID, actor: str) -> AutomationInfo:
        """Make the automation due on the next tick."""
        model = self._get(automation_id)
        if not model.is_enabled:
            raise InvalidTransitionError(
                "Automation", model.id, "disabled", "trigger",
                message="Cannot trigger a disabled automation",
            )
        model.next_run_at = self._clock.now()
        self._touch(model, actor)
        self._session.flush()
        logger.info("automation_triggered", extra={"automation_id": str(model.id), "actor": actor})
        return model.to_dto(self._default_timezone)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get(self, automation_id: UUID) -> AutomationInfo:
        return self._get(automation_id).to_dto(self._default_timezone)

    def list_automations(self, organization_id: UUID | None = None) -> list[AutomationInfo]:
        stmt = select(AutomationModel).order_by(AutomationModel.name, AutomationModel.id)
        if organization_id is not None:
            stmt = stmt.where(AutomationModel.organization_id == organization_id)
        return [m.to_dto(self._default_timezone) for m in self._session.execute(stmt).scalars()]

    def list_runs(self, automation_id: UUID, limit: int = 50) -> list[AutomationRunInfo]:
        """Most recent runs first."""
        self._get(automation_id)
        rows = self._session.execute(
            select(AutomationRunModel)
            .where(AutomationRunModel.automation_id == automation_id)
            .order_by(AutomationRunModel.started_at.desc(), AutomationRunModel.id)
            .limit(limit)
        ).scalars()
        return [r.to_dto() for r in rows]
