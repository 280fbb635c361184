"""
SqlAlchemyFundingRepository -- the transactional implementation of the port.

Contract:
    Wraps a caller-owned Session.  Like every kernel service it only ever
    flushes; ``sqlalchemy_unit_of_work`` is the one place that commits.

Guarantees:
    - ``lock_contract``: ContractLockManager mutex for the session's root
      transaction, then SELECT ... FOR UPDATE with populate_existing.
    - ``flush``: a stale contract version surfaces as OptimisticLockError.
    - ``savepoint``: SAVEPOINT via ``session.begin_nested()``.
"""

from __future__ import annotations

from collections.abc import Sequence
from contextlib import contextmanager
from typing import Callable, Iterator
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from funding_kernel.domain.types import ContractStatus, TransactionStatus
from funding_kernel.exceptions import OptimisticLockError
from funding_kernel.logging_config import get_logger
from funding_kernel.models import (
    FundingContract,
    Resident,
    Transaction,
    TransactionAuditEntry,
)
from funding_kernel.services.locking import ContractLockManager, default_lock_manager

logger = get_logger("repositories.sqlalchemy")


class SqlAlchemyFundingRepository:
    """FundingRepository over a SQLAlchemy Session."""

    def __init__(self, session: Session, locks: ContractLockManager | None = None):
        self.session = session
        self._locks = locks or default_lock_manager()

    # -- residents ------------------------------------------------------------

    def get_resident(self, resident_id: UUID) -> Resident | None:
        return self.session.get(Resident, resident_id)

    def add_resident(self, resident: Resident) -> None:
        self.session.add(resident)

    # -- contracts ------------------------------------------------------------

    def get_contract(self, contract_id: UUID) -> FundingContract | None:
        return self.session.get(FundingContract, contract_id)

    def lock_contract(self, contract_id: UUID) -> FundingContract | None:
        self._locks.acquire_for_session(self.session, contract_id)
        return self.session.execute(
            select(FundingContract)
            .where(FundingContract.id == contract_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def add_contract(self, contract: FundingContract) -> None:
        self.session.add(contract)

    def list_contracts(
        self,
        *,
        organization_id: UUID | None = None,
        resident_id: UUID | None = None,
        statuses: Sequence[ContractStatus] | None = None,
        auto_drawdown: bool | None = None,
    ) -> list[FundingContract]:
        stmt = select(FundingContract)
        if organization_id is not None:
            stmt = stmt.where(FundingContract.organization_id == organization_id)
        if resident_id is not None:
            stmt = stmt.where(FundingContract.resident_id == resident_id)
        if statuses:
            stmt = stmt.where(FundingContract.contract_status.in_([s.value for s in statuses]))
        if auto_drawdown is not None:
            stmt = stmt.where(FundingContract.auto_drawdown == auto_drawdown)
        stmt = stmt.order_by(FundingContract.start_date, FundingContract.id)
        return list(self.session.execute(stmt).scalars().all())

    # -- transactions ---------------------------------------------------------

    def get_transaction(
        self, transaction_id: UUID, *, for_update: bool = False,
    ) -> Transaction | None:
        if not for_update:
            return self.session.get(Transaction, transaction_id)
        return self.session.execute(
            select(Transaction)
            .where(Transaction.id == transaction_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def find_transaction_by_drawdown_key(self, drawdown_key: str) -> Transaction | None:
        return self.session.execute(
            select(Transaction).where(Transaction.drawdown_key == drawdown_key)
        ).scalar_one_or_none()

    def add_transaction(self, transaction: Transaction) -> None:
        self.session.add(transaction)

    def delete_transaction(self, transaction: Transaction) -> None:
        self.session.delete(transaction)

    def list_transactions(
        self,
        *,
        contract_id: UUID | None = None,
        status: TransactionStatus | None = None,
    ) -> list[Transaction]:
        stmt = select(Transaction)
        if contract_id is not None:
            stmt = stmt.where(Transaction.contract_id == contract_id)
        if status is not None:
            stmt = stmt.where(Transaction.status == status.value)
        stmt = stmt.order_by(Transaction.occurred_at, Transaction.created_at, Transaction.id)
        return list(self.session.execute(stmt).scalars().all())

    # -- audit trail ----------------------------------------------------------

    def append_audit_entry(self, entry: TransactionAuditEntry) -> None:
        self.session.add(entry)

    def list_audit_entries(self, transaction_id: UUID) -> list[TransactionAuditEntry]:
        return list(
            self.session.execute(
                select(TransactionAuditEntry)
                .where(TransactionAuditEntry.transaction_id == transaction_id)
                .order_by(TransactionAuditEntry.sequence)
            ).scalars().all()
        )

    def next_audit_sequence(self, transaction_id: UUID) -> int:
        self.session.flush()
        current = self.session.execute(
            select(func.max(TransactionAuditEntry.sequence)).where(
                TransactionAuditEntry.transaction_id == transaction_id
            )
        ).scalar()
        return (current or 0) + 1

    # -- unit of work ---------------------------------------------------------

    def flush(self) -> None:
        try:
            self.session.flush()
        except StaleDataError as exc:
            stale = [
                str(obj.id) for obj in self.session.dirty if isinstance(obj, FundingContract)
            ]
            logger.warning("optimistic_lock_conflict", extra={"contract_ids": stale})
            raise OptimisticLockError("FundingContract", ",".join(stale) or "unknown") from exc

    @contextmanager
    def savepoint(self) -> Iterator[None]:
        with self.session.begin_nested():
            yield


@contextmanager
def sqlalchemy_unit_of_work(
    session_factory: Callable[[], Session],
    locks: ContractLockManager | None = None,
) -> Iterator[SqlAlchemyFundingRepository]:
    """
    One database transaction around a repository.

    Commits on normal exit; rolls back and re-raises on exception.  Contract
    locks are released when the session's transaction ends either way.
    """
    session = session_factory()
    try:
        yield SqlAlchemyFundingRepository(session, locks)
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
