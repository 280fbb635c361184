"""
RecurringTransactionRunner -- clone a template transaction on schedule.

Parameters (automation.parameters):
    template_transaction_id: Transaction whose resident, contract, quantity,
        price, amount and description are copied.  Required.
    auto_post: Post the clone immediately (default False, leaving a draft
        for review).  A bool or the string "true" or "false".

The clone is dated with the run's business date and keyed
``recurring:{automation_id}:{date}``, so a second run on the same day is a
no-op rather than a duplicate.
"""

from __future__ import annotations

from uuid import UUID

from funding_batch.domain.types import AutomationType, RunnerOutcome
from funding_batch.runners.base import RunnerContext
from funding_kernel.domain.validation import TransactionCreateInput, parse_boolean
from funding_kernel.exceptions import FundingLedgerError
from funding_kernel.logging_config import get_logger
from funding_kernel.services.transaction_ledger import TransactionLedger

logger = get_logger("batch.runners.recurring_transaction")


class RecurringTransactionRunner:
    """Runner for ``recurring_transaction`` automations."""

    @property
    def automation_type(self) -> AutomationType:
        return AutomationType.RECURRING_TRANSACTION

    @property
    def description(self) -> str:
        return "Generate a transaction on schedule from a template"

    def run(self, context: RunnerContext) -> RunnerOutcome:
        params = context.parameters
        raw_template = params.get("template_transaction_id")
        if not raw_template:
            return RunnerOutcome(
                success=False,
                summary="No template transaction configured",
                error="template_transaction_id is required",
            )
        try:
            template_id = UUID(str(raw_template))
        except ValueError:
            return RunnerOutcome(
                success=False,
                summary="Template transaction id is not a valid id",
                error=f"invalid template_transaction_id: {raw_template!r}",
            )

        repo = context.repository
        template = repo.get_transaction(template_id)
        if template is None:
            return RunnerOutcome(
                success=False,
                summary="Template transaction not found",
                error=f"Transaction {template_id} not found",
            )

        key = f"recurring:{context.automation.id}:{context.as_of.isoformat()}"
        if repo.find_transaction_by_drawdown_key(key) is not None:
            return RunnerOutcome(
                success=True,
                summary=f"Already generated for {context.as_of.isoformat()}",
                metrics={"generated": 0, "skipped": 1},
            )

        raw_auto_post = params.get("auto_post")
        try:
            auto_post = False if raw_auto_post is None else parse_boolean(raw_auto_post)
        except ValueError:
            return RunnerOutcome(
                success=False,
                summary="auto_post is not a boolean",
                error=f"invalid auto_post: {raw_auto_post!r}",
            )

        ledger = TransactionLedger(repo, context.clock)
        try:
            with repo.savepoint():
                clone = ledger.create(
                    TransactionCreateInput(
                        resident_id=template.resident_id,
                        contract_id=template.contract_id,
                        occurred_at=context.as_of,
                        quantity=template.quantity,
                        unit_price=template.unit_price,
                        amount=template.amount,
                        description=template.description,
                        support_item_code=template.support_item_code,
                        drawdown_key=key,
                        automation_run_id=context.run_id,
                    ),
                    context.actor,
                )
                if auto_post:
                    clone = ledger.post(clone.id, context.actor)
        except FundingLedgerError as exc:
            logger.warning(
                "recurring_transaction_failed",
                extra={"template_id": str(template_id), "error_code": exc.code},
            )
            return RunnerOutcome(
                success=False,
                summary=f"Could not generate from template: {exc}",
                metrics={"generated": 0, "skipped": 0},
                error=str(exc),
            )

        logger.info(
            "recurring_transaction_generated",
            extra={
                "template_id": str(template_id),
                "transaction_id": str(clone.id),
                "status": clone.status.value,
            },
        )
        return RunnerOutcome(
            success=True,
            summary=f"Generated {clone.status.value} transaction for ${clone.amount}",
            metrics={
                "generated": 1,
                "skipped": 0,
                "transaction_id": str(clone.id),
                "amount": str(clone.amount),
            },
        )
