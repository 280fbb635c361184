"""
Pure domain layer.

DTOs, enums, validation, balance arithmetic and the drawdown calendar,
with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Wall-clock time (callers pass ``as_of`` or inject a Clock)
- I/O
"""

from funding_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from funding_kernel.domain.types import (
    AuditAction,
    AuditEntryInfo,
    BalanceImpact,
    BalanceSummary,
    BulkAction,
    BulkItemError,
    BulkOperationResult,
    BulkOutcome,
    ContractInfo,
    ContractRates,
    ContractStatus,
    DrawdownRate,
    FundingType,
    TransactionInfo,
    TransactionStatus,
)
from funding_kernel.domain.validation import Invalid, Ok, ValidationIssue, ValidationResult

__all__ = [
    "AuditAction",
    "AuditEntryInfo",
    "BalanceImpact",
    "BalanceSummary",
    "BulkAction",
    "BulkItemError",
    "BulkOperationResult",
    "BulkOutcome",
    "Clock",
    "ContractInfo",
    "ContractRates",
    "ContractStatus",
    "DeterministicClock",
    "DrawdownRate",
    "FundingType",
    "Invalid",
    "Ok",
    "SystemClock",
    "TransactionInfo",
    "TransactionStatus",
    "ValidationIssue",
    "ValidationResult",
]
