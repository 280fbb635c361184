"""
FundingRepository -- the persistence port.

Contract:
    The Contract Lifecycle Manager, Transaction Ledger and drawdown runners
    depend only on this protocol.  Records are the ORM classes from
    ``funding_kernel.models`` used as plain objects: services mutate them and
    call ``flush()``.  Two implementations exist:

    - ``SqlAlchemyFundingRepository`` -- the transactional store.
    - ``InMemoryFundingRepository`` -- a single-threaded test double.

Guarantees required of implementations:
    - ``lock_contract`` takes the per-contract lock for the current unit of
      work and returns a freshly read contract (never a stale cached copy).
    - ``savepoint`` undoes every change made inside it when the block raises.
    - Implementations never commit; the unit of work does.
"""

from __future__ import annotations

from collections.abc import Sequence
from contextlib import AbstractContextManager
from typing import Protocol, runtime_checkable
from uuid import UUID

from funding_kernel.domain.types import ContractStatus, TransactionStatus
from funding_kernel.models import (
    FundingContract,
    Resident,
    Transaction,
    TransactionAuditEntry,
)


@runtime_checkable
class FundingRepository(Protocol):
    """Persistence port for residents, contracts, transactions and audit entries."""

    # -- residents ------------------------------------------------------------

    def get_resident(self, resident_id: UUID) -> Resident | None: ...

    def add_resident(self, resident: Resident) -> None: ...

    # -- contracts ------------------------------------------------------------

    def get_contract(self, contract_id: UUID) -> FundingContract | None: ...

    def lock_contract(self, contract_id: UUID) -> FundingContract | None: ...

    def add_contract(self, contract: FundingContract) -> None: ...

    def list_contracts(
        self,
        *,
        organization_id: UUID | None = None,
        resident_id: UUID | None = None,
        statuses: Sequence[ContractStatus] | None = None,
        auto_drawdown: bool | None = None,
    ) -> list[FundingContract]: ...

    # -- transactions ---------------------------------------------------------

    def get_transaction(
        self, transaction_id: UUID, *, for_update: bool = False,
    ) -> Transaction | None: ...

    def find_transaction_by_drawdown_key(self, drawdown_key: str) -> Transaction | None: ...

    def add_transaction(self, transaction: Transaction) -> None: ...

    def delete_transaction(self, transaction: Transaction) -> None: ...

    def list_transactions(
        self,
        *,
        contract_id: UUID | None = None,
        status: TransactionStatus | None = None,
    ) -> list[Transaction]: ...

    # -- audit trail ----------------------------------------------------------

    def append_audit_entry(self, entry: TransactionAuditEntry) -> None: ...

    def list_audit_entries(self, transaction_id: UUID) -> list[TransactionAuditEntry]: ...

    def next_audit_sequence(self, transaction_id: UUID) -> int: ...

    # -- unit of work ---------------------------------------------------------

    def flush(self) -> None: ...

    def savepoint(self) -> AbstractContextManager[None]: ...
