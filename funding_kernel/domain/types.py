"""
Frozen value types for the funding ledger.

Contract:
    Status enums shared by models, services and the scheduler, and the
    immutable DTOs services hand back to callers.  ZERO I/O and no imports
    from db/, models/ or services/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


# =============================================================================
# Enums
# =============================================================================


class ContractStatus(str, Enum):
    """Funding contract lifecycle status."""

    DRAFT = "Draft"
    ACTIVE = "Active"
    EXPIRED = "Expired"
    CANCELLED = "Cancelled"
    RENEWED = "Renewed"


class FundingType(str, Enum):
    """Who funds the contract."""

    NDIS = "NDIS"
    GOVERNMENT = "Government"
    PRIVATE = "Private"
    FAMILY = "Family"
    OTHER = "Other"


class DrawdownRate(str, Enum):
    """Cadence at which an auto-drawdown contract is billed."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class TransactionStatus(str, Enum):
    """Transaction lifecycle status."""

    DRAFT = "draft"
    POSTED = "posted"
    VOIDED = "voided"


class AuditAction(str, Enum):
    """Kinds of entry in a transaction's append-only audit trail."""

    CREATED = "created"
    VALIDATED = "validated"
    POSTED = "posted"
    VOIDED = "voided"
    BALANCE_UPDATED = "balance_updated"


class BulkAction(str, Enum):
    POST = "post"
    VOID = "void"


class BulkOutcome(str, Enum):
    """Overall shape of a bulk run; transports map each to its own status."""

    COMPLETE = "complete"
    PARTIAL = "partial"
    FAILED = "failed"


# =============================================================================
# Contract DTOs
# =============================================================================


@dataclass(frozen=True)
class ContractInfo:
    """Immutable snapshot of a funding contract."""

    id: UUID
    organization_id: UUID
    resident_id: UUID
    contract_type: FundingType
    original_amount: Decimal
    current_balance: Decimal
    contract_status: ContractStatus
    drawdown_rate: DrawdownRate
    auto_drawdown: bool
    start_date: date
    end_date: date | None = None
    last_drawdown_date: date | None = None
    renewal_date: date | None = None
    parent_contract_id: UUID | None = None
    support_item_code: str | None = None
    daily_support_item_cost: Decimal | None = None
    description: str | None = None
    version: int = 1

    @property
    def is_active(self) -> bool:
        return self.contract_status == ContractStatus.ACTIVE


@dataclass(frozen=True)
class BalanceSummary:
    """Aggregate balances over a list of contracts."""

    total_original: Decimal = Decimal("0")
    total_current: Decimal = Decimal("0")
    total_drawn_down: Decimal = Decimal("0")
    active_contracts: int = 0
    expiring_soon: int = 0


@dataclass(frozen=True)
class BalanceImpact:
    """What posting ``amount`` would do to a contract's balance."""

    contract_id: UUID
    current_balance: Decimal
    amount: Decimal
    balance_after: Decimal
    sufficient: bool

    @property
    def shortfall(self) -> Decimal:
        return max(Decimal("0"), self.amount - self.current_balance)


@dataclass(frozen=True)
class ContractRates:
    """Spend rates implied by spreading the amount over the contract window."""

    daily: Decimal
    weekly: Decimal
    fortnightly: Decimal
    total_days: int


# =============================================================================
# Transaction DTOs
# =============================================================================


@dataclass(frozen=True)
class TransactionInfo:
    """Immutable snapshot of a ledger transaction."""

    id: UUID
    organization_id: UUID
    resident_id: UUID
    contract_id: UUID
    occurred_at: date
    quantity: Decimal
    unit_price: Decimal
    amount: Decimal
    status: TransactionStatus
    is_orphaned: bool
    description: str | None = None
    support_item_code: str | None = None
    drawdown_key: str | None = None
    automation_run_id: UUID | None = None
    posted_at: datetime | None = None
    posted_by: str | None = None
    voided_at: datetime | None = None
    voided_by: str | None = None
    void_reason: str | None = None
    created_by: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class AuditEntryInfo:
    """One append-only audit trail entry."""

    id: UUID
    transaction_id: UUID
    sequence: int
    action: AuditAction
    actor: str
    recorded_at: datetime
    detail: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Bulk DTOs
# =============================================================================


@dataclass(frozen=True)
class BulkItemError:
    """Why one transaction in a bulk run failed."""

    transaction_id: str
    code: str
    message: str


@dataclass(frozen=True)
class BulkOperationResult:
    """Per-batch outcome of a bulk post/void."""

    action: BulkAction
    processed: int
    failed: int
    errors: tuple[BulkItemError, ...] = ()
    succeeded_ids: tuple[str, ...] = ()

    @property
    def success(self) -> bool:
        return self.failed == 0

    @property
    def outcome(self) -> BulkOutcome:
        if self.failed == 0:
            return BulkOutcome.COMPLETE
        if self.processed == 0:
            return BulkOutcome.FAILED
        return BulkOutcome.PARTIAL
