"""Services for the funding ledger (write side)."""

from funding_kernel.services.bulk_service import BulkOperationCoordinator
from funding_kernel.services.contract_service import ContractLifecycleService
from funding_kernel.services.locking import ContractLockManager, default_lock_manager
from funding_kernel.services.transaction_ledger import TransactionLedger

__all__ = [
    "BulkOperationCoordinator",
    "ContractLifecycleService",
    "ContractLockManager",
    "TransactionLedger",
    "default_lock_manager",
]
