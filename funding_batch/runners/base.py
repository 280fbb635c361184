"""
AutomationRunner protocol, RunnerContext, and RunnerRegistry.

Contract:
    ``AutomationRunner`` is the interface every automation strategy
    implements.  ``RunnerRegistry`` maps ``automation_type`` to a runner.
    ``default_runner_registry()`` returns a registry holding the built-in
    runners.

Architecture:
    funding_batch/runners.  Runners reach the ledger only through kernel
    services built on ``context.repository``; they never commit.  The
    scheduler wraps each run in a SAVEPOINT and commits afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from funding_batch.domain.types import AutomationInfo, AutomationType, RunnerOutcome
from funding_kernel.domain.clock import Clock
from funding_kernel.exceptions import RunnerNotRegisteredError
from funding_kernel.repositories.base import FundingRepository


# =============================================================================
# Context
# =============================================================================


@dataclass(frozen=True)
class RunnerContext:
    """Everything a runner needs for one run of one automation."""

    automation: AutomationInfo
    run_id: UUID
    repository: FundingRepository
    clock: Clock
    now: datetime
    actor: str

    @property
    def as_of(self) -> date:
        """Business date of the run, in the automation's own timezone."""
        return self.now.astimezone(self.automation.schedule.zone).date()

    @property
    def parameters(self) -> dict[str, Any]:
        return self.automation.parameters


# =============================================================================
# Protocol
# =============================================================================


@runtime_checkable
class AutomationRunner(Protocol):
    """Protocol for automation strategies.

    Contract:
        - ``automation_type``: unique key registered in RunnerRegistry.
        - ``description``: human-readable label.
        - ``run()``: does the work and reports a RunnerOutcome.  It may also
          raise; the scheduler records either as the run's result.

    Non-goals:
        - Does NOT manage transactions -- the scheduler owns the SAVEPOINT.
        - Does NOT retry -- the next attempt is the next scheduled run.
    """

    @property
    def automation_type(self) -> AutomationType: ...

    @property
    def description(self) -> str: ...

    def run(self, context: RunnerContext) -> RunnerOutcome: ...


# =============================================================================
# Registry
# =============================================================================


class RunnerRegistry:
    """Registry mapping automation types to runners.

    Contract:
        - ``register()`` adds a runner; raises ValueError on duplicate.
        - ``get()`` raises RunnerNotRegisteredError if missing.
    """

    def __init__(self) -> None:
        self._runners: dict[str, AutomationRunner] = {}

    def register(self, runner: AutomationRunner) -> None:
        key = AutomationType(runner.automation_type).value
        if key in self._runners:
            raise ValueError(f"Runner for '{key}' is already registered")
        self._runners[key] = runner

    def get(self, automation_type: AutomationType | str) -> AutomationRunner:
        key = automation_type.value if isinstance(automation_type, AutomationType) else automation_type
        try:
            return self._runners[key]
        except KeyError:
            raise RunnerNotRegisteredError(key) from None

    def list_types(self) -> tuple[str, ...]:
        return tuple(sorted(self._runners))

    def __len__(self) -> int:
        return len(self._runners)

    def __contains__(self, automation_type: object) -> bool:
        key = automation_type.value if isinstance(automation_type, AutomationType) else automation_type
        return key in self._runners


def default_runner_registry(max_catch_up_periods: int | None = None) -> RunnerRegistry:
    """Registry with the contract billing, recurring transaction and expiry runners."""
    from funding_batch.runners.contract_billing import ContractBillingRunner
    from funding_batch.runners.contract_expiry import ContractExpiryRunner
    from funding_batch.runners.recurring_transaction import RecurringTransactionRunner

    registry = RunnerRegistry()
    if max_catch_up_periods is None:
        registry.register(ContractBillingRunner())
    else:
        registry.register(ContractBillingRunner(max_periods=max_catch_up_periods))
    registry.register(RecurringTransactionRunner())
    registry.register(ContractExpiryRunner())
    return registry
