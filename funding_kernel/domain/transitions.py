"""
Lifecycle transition tables.

Contracts:
    Draft  -> Active | Cancelled
    Active -> Expired | Cancelled | Renewed
    Expired, Cancelled, Renewed are terminal.

Transactions:
    draft  -> posted     (post; the only balance decrement)
    posted -> voided     (void; the exact inverse)
    voided is terminal.  Only drafts may be edited or deleted.
"""

from funding_kernel.domain.types import ContractStatus, TransactionStatus

CONTRACT_TRANSITIONS: dict[ContractStatus, frozenset[ContractStatus]] = {
    ContractStatus.DRAFT: frozenset({ContractStatus.ACTIVE, ContractStatus.CANCELLED}),
    ContractStatus.ACTIVE: frozenset({
        ContractStatus.EXPIRED,
        ContractStatus.CANCELLED,
        ContractStatus.RENEWED,
    }),
    ContractStatus.EXPIRED: frozenset(),
    ContractStatus.CANCELLED: frozenset(),
    ContractStatus.RENEWED: frozenset(),
}

TRANSACTION_TRANSITIONS: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.DRAFT: frozenset({TransactionStatus.POSTED}),
    TransactionStatus.POSTED: frozenset({TransactionStatus.VOIDED}),
    TransactionStatus.VOIDED: frozenset(),
}


def can_transition_contract(current: ContractStatus, target: ContractStatus) -> bool:
    return target in CONTRACT_TRANSITIONS[current]


def can_transition_transaction(current: TransactionStatus, target: TransactionStatus) -> bool:
    return target in TRANSACTION_TRANSITIONS[current]


def is_editable_transaction(status: TransactionStatus) -> bool:
    """Only a transaction that can still be posted may be edited or deleted."""
    return TransactionStatus.POSTED in TRANSACTION_TRANSITIONS[status]
