"""
AutomationScheduler -- one tick of the billing automation scheduler.

Contract:
    ``tick(now)`` finds enabled automations with ``next_run_at <= now`` and
    runs each one in its own database transaction:

        claim (FOR UPDATE SKIP LOCKED) -> insert AutomationRun(running)
        -> runner inside SAVEPOINT -> finish run -> reschedule -> commit

    There is no in-process timer; an external invoker (cron, the
    ``funding-scheduler tick`` CLI, or FundingLedgerAPI.run_scheduler) calls
    ``tick`` periodically.

Architecture: funding_batch/services.  Uses funding_batch.domain.schedule for
    pure next-run evaluation and the runner registry for the work itself.

Invariants enforced:
    - Clock injection: every timestamp comes from the clock or ``now``.
    - Isolation: a runner that raises rolls back its SAVEPOINT and is
      recorded as a SchedulerRunnerFailure; siblings still run.
    - An overlapping tick skips an automation another tick has claimed.
    - ``next_run_at`` is recomputed after every run, success or failure.
      A failed run is not retried within the tick.
    - A row that cannot be loaded is recorded as a failed run; one whose
      schedule is unreadable is also disabled so it stops coming due.
"""

from __future__ import annotations

from typing import Callable
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from funding_batch.domain.schedule import compute_next_run
from funding_batch.domain.types import (
    AutomationOutcome,
    AutomationRunStatus,
    RunnerOutcome,
    SchedulerTickResult,
)
from funding_batch.models.automation import AutomationModel, AutomationRunModel
from funding_batch.runners.base import RunnerContext, RunnerRegistry, default_runner_registry
from funding_kernel.domain.clock import Clock, SystemClock
from funding_kernel.exceptions import RunnerNotRegisteredError, SchedulerRunnerFailure
from funding_kernel.logging_config import LogContext, get_logger
from funding_kernel.repositories.sqlalchemy_repository import SqlAlchemyFundingRepository
from funding_kernel.services.locking import ContractLockManager

logger = get_logger("batch.scheduler")

NO_AUTOMATIONS_DUE = "No automations due"


class AutomationScheduler:
    """Runs due automations.

    Non-goals:
        - NOT a timer loop; callers decide when to tick.
        - No retries within a tick; the next attempt is the next run time.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        registry: RunnerRegistry | None = None,
        clock: Clock | None = None,
        locks: ContractLockManager | None = None,
        actor: str = "system:scheduler",
        default_timezone: str = "UTC",
    ):
        self._session_factory = session_factory
        self._registry = registry if registry is not None else default_runner_registry()
        self._clock = clock or SystemClock()
        self._locks = locks
        self._actor = actor
        self._default_timezone = default_timezone

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self, now=None) -> SchedulerTickResult:
        """Run every automation due at ``now`` (defaults to the clock)."""
        now = now or self._clock.now()
        due_ids = self._due_automation_ids(now)

        if not due_ids:
            logger.debug("scheduler_tick_idle", extra={"now": now})
            return SchedulerTickResult(processed=0, results=(), message=NO_AUTOMATIONS_DUE)

        logger.info("scheduler_tick_started", extra={"due_count": len(due_ids), "now": now})

        results: list[AutomationOutcome] = []
        for automation_id in due_ids:
            with LogContext.bind(automation_id=automation_id):
                outcome = self._run_automation(automation_id, now)
            if outcome is not None:
                results.append(outcome)

        failed = sum(1 for r in results if not r.success)
        logger.info(
            "scheduler_tick_completed",
            extra={"processed": len(results), "failed_count": failed},
        )
        return SchedulerTickResult(
            processed=len(results),
            results=tuple(results),
            message=f"Processed {len(results)} automation(s), {failed} failed",
        )

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _due_automation_ids(self, now) -> list[UUID]:
        session = self._session_factory()
        try:
            return list(
                session.execute(
                    select(AutomationModel.id)
                    .where(
                        AutomationModel.is_enabled.is_(True),
                        AutomationModel.next_run_at.is_not(None),
                        AutomationModel.next_run_at <= now,
                    )
                    .order_by(AutomationModel.next_run_at, AutomationModel.id)
                ).scalars().all()
            )
        finally:
            session.close()

    def _claim(self, session: Session, automation_id: UUID, now) -> AutomationModel | None:
        """Lock the automation row if it is still enabled and due."""
        return session.execute(
            select(AutomationModel)
            .where(
                AutomationModel.id == automation_id,
                AutomationModel.is_enabled.is_(True),
                AutomationModel.next_run_at <= now,
            )
            .with_for_update(skip_locked=True)
        ).scalar_one_or_none()

    def _run_automation(self, automation_id: UUID, now) -> AutomationOutcome | None:
        session = self._session_factory()
        name = str(automation_id)
        try:
            model = self._claim(session, automation_id, now)
            if model is None:
                logger.info("automation_claim_skipped", extra={"automation_id": str(automation_id)})
                session.rollback()
                return None
            name = model.name

            run = AutomationRunModel(
                id=uuid4(),
                automation_id=model.id,
                organization_id=model.organization_id,
                status=AutomationRunStatus.RUNNING.value,
                started_at=self._clock.now(),
                created_at=self._clock.now(),
                updated_at=self._clock.now(),
                created_by=self._actor,
            )
            session.add(run)
            session.flush()

            with LogContext.bind(run_id=run.id):
                outcome = self._execute(session, model, run.id, now)

            finished = self._clock.now()
            disabled_reason = self._reschedule(model, now)

            run.status = (
                AutomationRunStatus.SUCCESS if outcome.success else AutomationRunStatus.FAILED
            ).value
            run.finished_at = finished
            run.summary = outcome.summary
            run.metrics = outcome.metrics or None
            run.error = None if outcome.success else {
                "code": SchedulerRunnerFailure.code,
                "message": outcome.error or outcome.summary,
            }
            if disabled_reason is not None:
                run.error = {**(run.error or {}), "automation_disabled": disabled_reason}
            run.updated_at = finished

            model.last_run_at = now
            model.last_run_status = run.status
            model.updated_at = finished
            model.updated_by = self._actor

            session.commit()

            logger.info(
                "automation_run_finished",
                extra={
                    "automation_id": str(model.id),
                    "run_id": str(run.id),
                    "status": run.status,
                    "summary": outcome.summary,
                    "next_run_at": model.next_run_at,
                },
            )
            return AutomationOutcome(
                automation_id=model.id,
                name=model.name,
                success=outcome.success,
                summary=outcome.summary,
                run_id=run.id,
            )
        except Exception as exc:
            session.rollback()
            logger.exception(
                "automation_run_aborted",
                extra={"automation_id": str(automation_id)},
            )
            return AutomationOutcome(
                automation_id=automation_id,
                name=name,
                success=False,
                summary=str(exc),
            )
        finally:
            session.close()

    def _reschedule(self, model: AutomationModel, now) -> str | None:
        """Set ``next_run_at``; disable the automation if its schedule is unreadable.

        Returns the reason the automation was disabled, or None.
        """
        try:
            model.next_run_at = compute_next_run(model.schedule_spec(self._default_timezone), now)
            return None
        except ValueError as exc:
            reason = f"Stored schedule is unreadable: {exc}"
            model.is_enabled = False
            model.next_run_at = None
            logger.error(
                "automation_disabled",
                extra={"automation_id": str(model.id), "reason": reason},
            )
            return reason

    def _execute(
        self, session: Session, model: AutomationModel, run_id: UUID, now,
    ) -> RunnerOutcome:
        """Run the automation's runner inside a SAVEPOINT.

        A stored row that cannot be loaded (unknown type, unreadable
        schedule) or has no registered runner is a failed run, not an
        aborted tick.
        """
        try:
            automation = model.to_dto(self._default_timezone)
            runner = self._registry.get(automation.automation_type)
        except (ValueError, RunnerNotRegisteredError) as exc:
            failure = SchedulerRunnerFailure(model.id, model.automation_type, str(exc))
            logger.error(
                "automation_load_failed",
                extra={"automation_type": model.automation_type, "error": str(exc)},
            )
            return RunnerOutcome(success=False, summary=str(failure), error=str(exc))

        context = RunnerContext(
            automation=automation,
            run_id=run_id,
            repository=SqlAlchemyFundingRepository(session, self._locks),
            clock=self._clock,
            now=now,
            actor=self._actor,
        )

        savepoint = session.begin_nested()
        try:
            outcome = runner.run(context)
        except Exception as exc:
            savepoint.rollback()
            failure = SchedulerRunnerFailure(automation.id, automation.automation_type.value, str(exc))
            logger.exception(
                "automation_runner_failed",
                extra={"automation_type": automation.automation_type.value},
            )
            return RunnerOutcome(success=False, summary=str(failure), error=str(exc))

        savepoint.commit()
        if not outcome.success:
            logger.warning(
                "automation_runner_reported_failure",
                extra={"automation_type": automation.automation_type.value, "error": outcome.error},
            )
        return outcome
