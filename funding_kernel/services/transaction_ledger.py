"""
TransactionLedger -- draft/posted/voided transactions and the balance they move.

Responsibility:
    Creates draft transactions against funding contracts, posts them
    (decrementing the contract balance) and voids them (restoring it), and
    keeps the append-only audit trail for each transaction.

Architecture position:
    Kernel > Services -- imperative shell.
    Entry point for manual API calls, the bulk coordinator and the
    scheduler's billing runners alike.

Invariants enforced:
    - Posting and voiding are the only operations that touch
      current_balance, and void adds back exactly the amount post took.
    - 0 <= current_balance <= original_amount after every operation.
    - The balance check and the write happen under the per-contract lock
      (repository.lock_contract), and the transaction is re-read under that
      lock, so two posts cannot both pass a check against a stale balance.
    - Rejected operations mutate nothing.
    - Drafts may be edited or deleted; posted and voided transactions may
      not (also enforced by ORM listeners in db/immutability.py).
    - is_orphaned is decided once, from the contract window at creation.

Failure modes:
    - TransactionNotFoundError / ContractNotFoundError / ResidentNotFoundError.
    - InvalidTransitionError("Can only post draft transactions") and
      friends for operations on the wrong status.
    - InsufficientBalanceError(attempted, available).
    - ValidationError for bad input or a missing void reason.
    - ContractLockTimeoutError / OptimisticLockError under contention.

Audit relevance:
    created, validated, posted, voided and balance_updated entries carry the
    actor and the clock time; balance_updated records both balances.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from funding_kernel.domain.balance import balance_impact
from funding_kernel.domain.types import (
    AuditAction,
    AuditEntryInfo,
    BalanceImpact,
    ContractStatus,
    TransactionInfo,
    TransactionStatus,
)
from funding_kernel.domain.transitions import can_transition_transaction, is_editable_transaction
from funding_kernel.domain.validation import (
    TransactionCreateInput,
    TransactionPatch,
    line_amount,
    require_valid,
    transaction_input_issues,
    transaction_patch_issues,
    void_reason_issues,
)
from funding_kernel.exceptions import (
    BalanceInvariantError,
    ContractNotFoundError,
    CrossOrganizationError,
    InsufficientBalanceError,
    InvalidTransitionError,
    ResidentNotFoundError,
    TransactionNotFoundError,
)
from funding_kernel.logging_config import LogContext, get_logger
from funding_kernel.models import FundingContract, Transaction, TransactionAuditEntry
from funding_kernel.services.base import BaseService

logger = get_logger("services.ledger")


def is_outside_window(occurred_at: date, contract: FundingContract) -> bool:
    """True when the service date falls outside [start_date, end_date]."""
    if contract.start_date is not None and occurred_at < contract.start_date:
        return True
    if contract.end_date is not None and occurred_at > contract.end_date:
        return True
    return False


class TransactionLedger(BaseService):
    """
    Transaction Ledger.

    Contract:
        Returns frozen ``TransactionInfo`` DTOs.  Flushes through the
        repository; the caller's unit of work commits.
    """

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def _get(self, transaction_id: UUID, *, for_update: bool = False) -> Transaction:
        tx = self.repository.get_transaction(transaction_id, for_update=for_update)
        if tx is None:
            raise TransactionNotFoundError(transaction_id)
        return tx

    def _lock_contract(self, contract_id: UUID) -> FundingContract:
        contract = self.repository.lock_contract(contract_id)
        if contract is None:
            raise ContractNotFoundError(contract_id)
        return contract

    def get(self, transaction_id: UUID) -> TransactionInfo:
        return self._get(transaction_id).to_dto()

    def list_for_contract(
        self, contract_id: UUID, status: TransactionStatus | None = None,
    ) -> list[TransactionInfo]:
        return [
            t.to_dto() for t in self.repository.list_transactions(contract_id=contract_id, status=status)
        ]

    def audit_trail(self, transaction_id: UUID) -> list[AuditEntryInfo]:
        return [e.to_dto() for e in self.repository.list_audit_entries(transaction_id)]

    def balance_preview(self, contract_id: UUID, amount: Decimal) -> BalanceImpact:
        """Balance impact of posting ``amount`` now (no lock, no write)."""
        contract = self.repository.get_contract(contract_id)
        if contract is None:
            raise ContractNotFoundError(contract_id)
        return balance_impact(contract.to_dto(), amount)

    # -------------------------------------------------------------------------
    # Audit
    # -------------------------------------------------------------------------

    def _audit(
        self,
        tx: Transaction,
        action: AuditAction,
        actor: str,
        detail: dict[str, Any] | None = None,
    ) -> None:
        self.repository.append_audit_entry(
            TransactionAuditEntry(
                id=uuid4(),
                transaction_id=tx.id,
                sequence=self.repository.next_audit_sequence(tx.id),
                action=action.value,
                actor=actor,
                recorded_at=self.clock.now(),
                detail=detail or {},
            )
        )

    # -------------------------------------------------------------------------
    # Draft lifecycle
    # -------------------------------------------------------------------------

    def create(self, data: TransactionCreateInput, actor: str) -> TransactionInfo:
        """
        Create a draft transaction.  No balance effect.

        Postconditions:
            - status draft; amount = data.amount or quantity x unit_price.
            - is_orphaned set from the contract window as it is now.
            - A ``created`` audit entry is appended.

        Raises:
            ValidationError: Non-positive quantity, negative price/amount, or
                money with more decimal places than the columns store.
            ContractNotFoundError / ResidentNotFoundError: Unknown reference.
            CrossOrganizationError: Resident is not the contract's resident,
                or belongs to another organization.
        """
        require_valid(transaction_input_issues(data))

        contract = self.repository.get_contract(data.contract_id)
        if contract is None:
            raise ContractNotFoundError(data.contract_id)
        resident = self.repository.get_resident(data.resident_id)
        if resident is None:
            raise ResidentNotFoundError(data.resident_id)
        if resident.organization_id != contract.organization_id:
            raise CrossOrganizationError(
                "Resident", resident.id, contract.organization_id, resident.organization_id,
            )
        if resident.id != contract.resident_id:
            raise CrossOrganizationError(
                "Contract", contract.id, resident.id, contract.resident_id,
            )

        now = self.clock.now()
        tx = Transaction(
            id=uuid4(),
            organization_id=contract.organization_id,
            resident_id=resident.id,
            contract_id=contract.id,
            occurred_at=data.occurred_at,
            description=data.description,
            support_item_code=data.support_item_code or contract.support_item_code,
            quantity=data.quantity,
            unit_price=data.unit_price,
            amount=data.resolved_amount,
            status=TransactionStatus.DRAFT.value,
            is_orphaned=is_outside_window(data.occurred_at, contract),
            drawdown_key=data.drawdown_key,
            automation_run_id=data.automation_run_id,
            created_at=now,
            updated_at=now,
            created_by=actor,
        )
        self.repository.add_transaction(tx)
        self._audit(tx, AuditAction.CREATED, actor, {"amount": str(tx.amount)})
        self.repository.flush()

        log = logger.warning if tx.is_orphaned else logger.info
        log(
            "transaction_created",
            extra={
                "transaction_id": str(tx.id),
                "contract_id": str(contract.id),
                "amount": str(tx.amount),
                "is_orphaned": tx.is_orphaned,
                "actor": actor,
            },
        )
        return tx.to_dto()

    def update(self, transaction_id: UUID, patch: TransactionPatch, actor: str) -> TransactionInfo:
        """
        Edit a draft.

        When quantity or unit_price change and no amount is patched, the
        amount is recomputed as quantity x unit_price.  A new occurred_at
        re-decides is_orphaned against the contract window.

        Raises:
            ValidationError: Empty patch or bad values.
            TransactionNotFoundError: Unknown transaction.
            InvalidTransitionError: Transaction is not a draft.
        """
        require_valid(transaction_patch_issues(patch))
        tx = self._get(transaction_id)
        if not is_editable_transaction(TransactionStatus(tx.status)):
            raise InvalidTransitionError(
                "Transaction", tx.id, tx.status, "update",
                message="Can only update draft transactions",
            )

        if patch.quantity is not None:
            tx.quantity = patch.quantity
        if patch.unit_price is not None:
            tx.unit_price = patch.unit_price
        if patch.amount is not None:
            tx.amount = patch.amount
        elif patch.quantity is not None or patch.unit_price is not None:
            tx.amount = line_amount(tx.quantity, tx.unit_price)
        if patch.description is not None:
            tx.description = patch.description
        if patch.support_item_code is not None:
            tx.support_item_code = patch.support_item_code
        if patch.occurred_at is not None:
            tx.occurred_at = patch.occurred_at
            contract = self.repository.get_contract(tx.contract_id)
            tx.is_orphaned = is_outside_window(patch.occurred_at, contract)

        tx.updated_at = self.clock.now()
        tx.updated_by = actor
        self.repository.flush()
        logger.info(
            "transaction_updated",
            extra={"transaction_id": str(tx.id), "amount": str(tx.amount), "actor": actor},
        )
        return tx.to_dto()

    def delete(self, transaction_id: UUID, actor: str) -> None:
        """
        Delete a draft.  Its audit entries stay.

        Raises:
            TransactionNotFoundError: Unknown transaction.
            InvalidTransitionError: Transaction is not a draft.
        """
        tx = self._get(transaction_id)
        if not is_editable_transaction(TransactionStatus(tx.status)):
            raise InvalidTransitionError(
                "Transaction", tx.id, tx.status, "delete",
                message="Can only delete draft transactions",
            )
        self.repository.delete_transaction(tx)
        self.repository.flush()
        logger.info(
            "transaction_deleted",
            extra={"transaction_id": str(transaction_id), "actor": actor},
        )

    # -------------------------------------------------------------------------
    # Balance-moving operations
    # -------------------------------------------------------------------------

    def post(self, transaction_id: UUID, actor: str) -> TransactionInfo:
        """
        draft -> posted, decrementing the contract balance by ``amount``.

        Preconditions:
            - Transaction is a draft; contract is not Cancelled.
            - amount <= contract.current_balance.

        Postconditions:
            - current_balance reduced by exactly ``amount``.
            - posted_at / posted_by stamped.
            - validated, posted and balance_updated audit entries appended.

        Raises:
            TransactionNotFoundError: Unknown transaction.
            InvalidTransitionError: Not a draft, or contract Cancelled.
            InsufficientBalanceError: amount exceeds current_balance.
        """
        contract_id = self._get(transaction_id).contract_id
        with LogContext.bind(transaction_id=transaction_id, contract_id=contract_id):
            contract = self._lock_contract(contract_id)
            tx = self._get(transaction_id, for_update=True)

            self._require_transition(
                tx, TransactionStatus.POSTED, "Can only post draft transactions",
            )
            if contract.contract_status == ContractStatus.CANCELLED.value:
                raise InvalidTransitionError(
                    "FundingContract", contract.id, contract.contract_status, "post",
                    message="Cannot post against a cancelled contract",
                )

            impact = balance_impact(contract.to_dto(), tx.amount)
            if not impact.sufficient:
                logger.warning(
                    "post_rejected_insufficient_balance",
                    extra={
                        "attempted": str(tx.amount),
                        "available": str(contract.current_balance),
                        "actor": actor,
                    },
                )
                raise InsufficientBalanceError(contract.id, tx.amount, contract.current_balance)

            previous = contract.current_balance
            self._write_balance(contract, impact.balance_after, actor)

            now = self.clock.now()
            tx.status = TransactionStatus.POSTED.value
            tx.posted_at = now
            tx.posted_by = actor
            tx.updated_at = now
            tx.updated_by = actor

            self._audit(tx, AuditAction.VALIDATED, actor, {"available": str(previous)})
            self._audit(tx, AuditAction.POSTED, actor, {"amount": str(tx.amount)})
            self._audit(
                tx,
                AuditAction.BALANCE_UPDATED,
                actor,
                {"previous_balance": str(previous), "new_balance": str(contract.current_balance)},
            )
            self.repository.flush()

            logger.info(
                "transaction_posted",
                extra={
                    "amount": str(tx.amount),
                    "previous_balance": str(previous),
                    "new_balance": str(contract.current_balance),
                    "actor": actor,
                },
            )
            return tx.to_dto()

    def void(self, transaction_id: UUID, reason: str, actor: str) -> TransactionInfo:
        """
        posted -> voided, restoring exactly the amount the post consumed.

        Raises:
            ValidationError: Empty reason (checked before anything is read).
            TransactionNotFoundError: Unknown transaction.
            InvalidTransitionError: Transaction is not posted.
            BalanceInvariantError: Restoring would exceed original_amount.
        """
        require_valid(void_reason_issues(reason))
        contract_id = self._get(transaction_id).contract_id
        with LogContext.bind(transaction_id=transaction_id, contract_id=contract_id):
            contract = self._lock_contract(contract_id)
            tx = self._get(transaction_id, for_update=True)

            self._require_transition(
                tx, TransactionStatus.VOIDED, "Can only void posted transactions",
            )

            previous = contract.current_balance
            self._write_balance(contract, previous + tx.amount, actor)

            now = self.clock.now()
            tx.status = TransactionStatus.VOIDED.value
            tx.voided_at = now
            tx.voided_by = actor
            tx.void_reason = reason.strip()
            tx.updated_at = now
            tx.updated_by = actor

            self._audit(tx, AuditAction.VOIDED, actor, {"reason": tx.void_reason})
            self._audit(
                tx,
                AuditAction.BALANCE_UPDATED,
                actor,
                {"previous_balance": str(previous), "new_balance": str(contract.current_balance)},
            )
            self.repository.flush()

            logger.info(
                "transaction_voided",
                extra={
                    "amount": str(tx.amount),
                    "previous_balance": str(previous),
                    "new_balance": str(contract.current_balance),
                    "reason": tx.void_reason,
                    "actor": actor,
                },
            )
            return tx.to_dto()

    def _require_transition(self, tx: Transaction, target: TransactionStatus, message: str) -> None:
        if not can_transition_transaction(TransactionStatus(tx.status), target):
            raise InvalidTransitionError(
                "Transaction", tx.id, tx.status, target.value, message=message,
            )

    def _write_balance(self, contract: FundingContract, new_balance: Decimal, actor: str) -> None:
        if new_balance < 0 or new_balance > contract.original_amount:
            logger.error(
                "balance_invariant_violation_blocked",
                extra={
                    "original_amount": str(contract.original_amount),
                    "resulting_balance": str(new_balance),
                },
            )
            raise BalanceInvariantError(contract.id, contract.original_amount, new_balance)
        contract.current_balance = new_balance
        contract.updated_at = self.clock.now()
        contract.updated_by = actor
