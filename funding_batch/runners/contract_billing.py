"""
ContractBillingRunner -- automatic drawdowns for due funding contracts.

For each Active, auto-drawdown contract whose next drawdown date has
passed, sizes the unbilled periods (capped catch-up), creates a draft
transaction, posts it through the TransactionLedger and advances the
contract's last_drawdown_date.  All three writes happen in one SAVEPOINT
per contract, inside the scheduler's database transaction, so a period is
either fully billed and recorded or not touched at all.

Exactly-once per period:
    Every generated transaction carries ``drawdown_key`` (contract + the
    exact days billed), which is UNIQUE.  A key that already exists means
    the period is billed and the contract is skipped; a concurrent tick
    that gets past the per-contract lock still collides on the key.

At most one contract per resident is billed in one run.  A resident whose
first contract fails may still be billed on another of their contracts.
"""

from __future__ import annotations

from collections import Counter
from decimal import Decimal

from sqlalchemy.exc import IntegrityError

from funding_batch.domain.types import AutomationType, RunnerOutcome
from funding_batch.runners.base import RunnerContext
from funding_kernel.db.types import ZERO, round_money, to_decimal
from funding_kernel.domain.drawdown import DEFAULT_MAX_PERIODS, DrawdownPlan, plan_drawdown
from funding_kernel.domain.types import ContractInfo
from funding_kernel.domain.validation import TransactionCreateInput
from funding_kernel.exceptions import FundingLedgerError
from funding_kernel.logging_config import LogContext, get_logger
from funding_kernel.services.contract_service import ContractLifecycleService
from funding_kernel.services.transaction_ledger import TransactionLedger

logger = get_logger("batch.runners.contract_billing")


def _description(contract: ContractInfo, plan: DrawdownPlan) -> str:
    return (
        f"Automatic {contract.drawdown_rate.value} drawdown "
        f"{plan.period_start.isoformat()} to {plan.period_end.isoformat()}"
    )


class ContractBillingRunner:
    """Runner for ``contract_billing_run`` automations.

    Parameters (automation.parameters):
        unit_price: Per-period price for contracts without a daily support
            item cost.  Contracts with neither are reported as failures.
    """

    def __init__(self, max_periods: int = DEFAULT_MAX_PERIODS):
        self.max_periods = max_periods

    @property
    def automation_type(self) -> AutomationType:
        return AutomationType.CONTRACT_BILLING_RUN

    @property
    def description(self) -> str:
        return "Scan funding contracts and post drawdown transactions for elapsed periods"

    def run(self, context: RunnerContext) -> RunnerOutcome:
        repo = context.repository
        contracts = ContractLifecycleService(repo, context.clock)
        ledger = TransactionLedger(repo, context.clock)

        raw_price = context.parameters.get("unit_price")
        unit_price = to_decimal(str(raw_price)) if raw_price is not None else None

        due = contracts.find_due_for_drawdown(
            context.as_of, organization_id=context.automation.organization_id,
        )

        billed_residents = set()
        successful = 0
        skipped = 0
        failures: list[dict[str, str]] = []
        total = ZERO
        rate_breakdown: Counter[str] = Counter()

        for contract in due:
            if contract.resident_id in billed_residents:
                skipped += 1
                logger.info(
                    "billing_skipped_resident_already_billed",
                    extra={"contract_id": str(contract.id), "resident_id": str(contract.resident_id)},
                )
                continue

            try:
                plan = plan_drawdown(contract, context.as_of, unit_price, self.max_periods)
            except ValueError as exc:
                failures.append({
                    "contract_id": str(contract.id),
                    "code": "DRAWDOWN_UNPRICED",
                    "message": str(exc),
                })
                continue
            if plan is None:
                skipped += 1
                continue
            if repo.find_transaction_by_drawdown_key(plan.drawdown_key) is not None:
                skipped += 1
                logger.info(
                    "billing_skipped_period_already_billed",
                    extra={"contract_id": str(contract.id), "drawdown_key": plan.drawdown_key},
                )
                continue

            try:
                with LogContext.bind(contract_id=contract.id), repo.savepoint():
                    amount = self._bill(contract, plan, context, ledger, contracts)
            except IntegrityError:
                skipped += 1
                logger.warning(
                    "billing_drawdown_key_collision",
                    extra={"contract_id": str(contract.id), "drawdown_key": plan.drawdown_key},
                )
                continue
            except FundingLedgerError as exc:
                failures.append({
                    "contract_id": str(contract.id),
                    "code": exc.code,
                    "message": str(exc),
                })
                logger.warning(
                    "billing_contract_failed",
                    extra={"contract_id": str(contract.id), "error_code": exc.code},
                )
                continue

            billed_residents.add(contract.resident_id)
            successful += 1
            total += amount
            rate_breakdown[contract.drawdown_rate.value] += 1

        metrics = {
            "processed_contracts": len(due),
            "successful_transactions": successful,
            "failed_transactions": len(failures),
            "skipped_contracts": skipped,
            "total_amount": str(round_money(total)),
            "average_amount": str(round_money(total / successful)) if successful else "0.00",
            "rate_breakdown": dict(rate_breakdown),
        }
        if failures:
            metrics["failures"] = failures

        summary = (
            f"Generated {successful} drawdown transaction(s) totalling "
            f"${round_money(total)}; {len(failures)} failed, {skipped} skipped"
        )
        logger.info("billing_run_completed", extra={"metrics": metrics})
        return RunnerOutcome(
            success=not failures,
            summary=summary,
            metrics=metrics,
            error=failures[0]["message"] if failures else None,
        )

    def _bill(
        self,
        contract: ContractInfo,
        plan: DrawdownPlan,
        context: RunnerContext,
        ledger: TransactionLedger,
        contracts: ContractLifecycleService,
    ) -> Decimal:
        draft = ledger.create(
            TransactionCreateInput(
                resident_id=contract.resident_id,
                contract_id=contract.id,
                occurred_at=plan.period_end,
                quantity=plan.quantity,
                unit_price=plan.unit_price,
                amount=plan.amount,
                description=_description(contract, plan),
                support_item_code=contract.support_item_code,
                drawdown_key=plan.drawdown_key,
                automation_run_id=context.run_id,
            ),
            context.actor,
        )
        posted = ledger.post(draft.id, context.actor)
        contracts.record_drawdown(contract.id, plan.period_end, context.actor)
        logger.info(
            "billing_drawdown_posted",
            extra={
                "transaction_id": str(posted.id),
                "amount": str(posted.amount),
                "period_start": plan.period_start.isoformat(),
                "period_end": plan.period_end.isoformat(),
                "periods": plan.periods,
            },
        )
        return posted.amount
