"""ContractExpiryRunner -- move lapsed Active contracts to Expired."""

from __future__ import annotations

from funding_batch.domain.types import AutomationType, RunnerOutcome
from funding_batch.runners.base import RunnerContext
from funding_kernel.logging_config import get_logger
from funding_kernel.services.contract_service import ContractLifecycleService

logger = get_logger("batch.runners.contract_expiry")


class ContractExpiryRunner:
    """Runner for ``contract_expiry`` automations."""

    @property
    def automation_type(self) -> AutomationType:
        return AutomationType.CONTRACT_EXPIRY

    @property
    def description(self) -> str:
        return "Expire Active contracts whose end date has passed"

    def run(self, context: RunnerContext) -> RunnerOutcome:
        service = ContractLifecycleService(context.repository, context.clock)
        expired = service.expire_lapsed(
            context.as_of,
            context.actor,
            organization_id=context.automation.organization_id,
        )
        logger.info("contracts_expired", extra={"count": len(expired)})
        return RunnerOutcome(
            success=True,
            summary=f"Expired {len(expired)} contract(s)",
            metrics={
                "expired_contracts": len(expired),
                "contract_ids": [str(c.id) for c in expired],
            },
        )
