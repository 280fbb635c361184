"""ORM models for the funding ledger."""

from funding_kernel.models.contract import FundingContract
from funding_kernel.models.resident import Resident
from funding_kernel.models.transaction import Transaction, TransactionAuditEntry

__all__ = [
    "FundingContract",
    "Resident",
    "Transaction",
    "TransactionAuditEntry",
]
