"""
InMemoryFundingRepository -- single-threaded test double for the port.

Records are the same ORM classes the SQLAlchemy repository stores, kept in
dicts and never attached to a Session.  ``savepoint`` and ``unit_of_work``
snapshot every record's column values and restore them if the block raises,
so rejected operations leave the store exactly as they found it.

Contract locks go through a ContractLockManager with this repository as the
owner and are released when a unit of work ends.
"""

from __future__ import annotations

from collections.abc import Sequence
from contextlib import contextmanager
from typing import Any, Iterator
from uuid import UUID

from sqlalchemy import inspect

from funding_kernel.domain.types import ContractStatus, TransactionStatus
from funding_kernel.models import (
    FundingContract,
    Resident,
    Transaction,
    TransactionAuditEntry,
)
from funding_kernel.services.locking import ContractLockManager


def _columns(obj: Any) -> dict[str, Any]:
    return {attr.key: getattr(obj, attr.key) for attr in inspect(type(obj)).column_attrs}


class InMemoryFundingRepository:
    """FundingRepository over plain dictionaries."""

    def __init__(self, locks: ContractLockManager | None = None):
        self._locks = locks or ContractLockManager()
        self.residents: dict[UUID, Resident] = {}
        self.contracts: dict[UUID, FundingContract] = {}
        self.transactions: dict[UUID, Transaction] = {}
        self.audit_entries: list[TransactionAuditEntry] = []

    # -- residents ------------------------------------------------------------

    def get_resident(self, resident_id: UUID) -> Resident | None:
        return self.residents.get(resident_id)

    def add_resident(self, resident: Resident) -> None:
        self.residents[resident.id] = resident

    # -- contracts ------------------------------------------------------------

    def get_contract(self, contract_id: UUID) -> FundingContract | None:
        return self.contracts.get(contract_id)

    def lock_contract(self, contract_id: UUID) -> FundingContract | None:
        self._locks.acquire(self, contract_id)
        return self.contracts.get(contract_id)

    def add_contract(self, contract: FundingContract) -> None:
        if contract.version is None:
            contract.version = 1
        self.contracts[contract.id] = contract

    def list_contracts(
        self,
        *,
        organization_id: UUID | None = None,
        resident_id: UUID | None = None,
        statuses: Sequence[ContractStatus] | None = None,
        auto_drawdown: bool | None = None,
    ) -> list[FundingContract]:
        wanted = {s.value for s in statuses} if statuses else None
        found = [
            c for c in self.contracts.values()
            if (organization_id is None or c.organization_id == organization_id)
            and (resident_id is None or c.resident_id == resident_id)
            and (wanted is None or c.contract_status in wanted)
            and (auto_drawdown is None or bool(c.auto_drawdown) == auto_drawdown)
        ]
        return sorted(found, key=lambda c: (c.start_date, str(c.id)))

    # -- transactions ---------------------------------------------------------

    def get_transaction(
        self, transaction_id: UUID, *, for_update: bool = False,
    ) -> Transaction | None:
        return self.transactions.get(transaction_id)

    def find_transaction_by_drawdown_key(self, drawdown_key: str) -> Transaction | None:
        for tx in self.transactions.values():
            if tx.drawdown_key == drawdown_key:
                return tx
        return None

    def add_transaction(self, transaction: Transaction) -> None:
        if transaction.drawdown_key is not None:
            existing = self.find_transaction_by_drawdown_key(transaction.drawdown_key)
            if existing is not None and existing.id != transaction.id:
                raise ValueError(f"Duplicate drawdown_key: {transaction.drawdown_key}")
        self.transactions[transaction.id] = transaction

    def delete_transaction(self, transaction: Transaction) -> None:
        self.transactions.pop(transaction.id, None)

    def list_transactions(
        self,
        *,
        contract_id: UUID | None = None,
        status: TransactionStatus | None = None,
    ) -> list[Transaction]:
        found = [
            t for t in self.transactions.values()
            if (contract_id is None or t.contract_id == contract_id)
            and (status is None or t.status == status.value)
        ]
        return sorted(found, key=lambda t: (t.occurred_at, t.created_at, str(t.id)))

    # -- audit trail ----------------------------------------------------------

    def append_audit_entry(self, entry: TransactionAuditEntry) -> None:
        self.audit_entries.append(entry)

    def list_audit_entries(self, transaction_id: UUID) -> list[TransactionAuditEntry]:
        return sorted(
            (e for e in self.audit_entries if e.transaction_id == transaction_id),
            key=lambda e: e.sequence,
        )

    def next_audit_sequence(self, transaction_id: UUID) -> int:
        return 1 + max(
            (e.sequence for e in self.audit_entries if e.transaction_id == transaction_id),
            default=0,
        )

    # -- unit of work ---------------------------------------------------------

    def flush(self) -> None:
        for contract in self.contracts.values():
            _check_contract_row(contract)

    @contextmanager
    def savepoint(self) -> Iterator[None]:
        snapshot = self._snapshot()
        try:
            yield
        except BaseException:
            self._restore(snapshot)
            raise

    @contextmanager
    def unit_of_work(self) -> Iterator[InMemoryFundingRepository]:
        """Mirror of ``sqlalchemy_unit_of_work``: all-or-nothing, then unlock."""
        try:
            with self.savepoint():
                yield self
                self.flush()
        finally:
            self._locks.release_all(self)

    def _snapshot(self):
        return (
            {k: (v, _columns(v)) for k, v in self.residents.items()},
            {k: (v, _columns(v)) for k, v in self.contracts.items()},
            {k: (v, _columns(v)) for k, v in self.transactions.items()},
            list(self.audit_entries),
        )

    def _restore(self, snapshot) -> None:
        residents, contracts, transactions, audit = snapshot
        for store, saved in (
            (self.residents, residents),
            (self.contracts, contracts),
            (self.transactions, transactions),
        ):
            store.clear()
            for key, (obj, values) in saved.items():
                for attr, value in values.items():
                    setattr(obj, attr, value)
                store[key] = obj
        self.audit_entries[:] = audit


def _check_contract_row(contract: FundingContract) -> None:
    """The CHECK constraints the database would enforce on flush."""
    if contract.current_balance < 0 or contract.current_balance > contract.original_amount:
        raise ValueError(
            f"Contract {contract.id} balance {contract.current_balance} outside "
            f"[0, {contract.original_amount}]"
        )
    if contract.end_date is not None and contract.end_date < contract.start_date:
        raise ValueError(f"Contract {contract.id} ends before it starts")
