"""
Module: funding_kernel.models.transaction
Responsibility: ORM persistence for ledger transactions and their
    append-only audit trail.
Architecture position: Kernel > Models.  May import from db/ and
    domain/types.py only.

Invariants enforced:
    - drawdown_key is UNIQUE: one generated transaction per (contract, period).
    - Posted/voided transactions are immutable except for the void fields,
      and audit entries are immutable from creation (db/immutability.py).
    - TransactionAuditEntry.transaction_id carries no foreign key so that the
      trail of a deleted draft survives it.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from funding_kernel.db.base import Base, TrackedBase, UTCDateTime, UUIDString
from funding_kernel.domain.types import (
    AuditAction,
    AuditEntryInfo,
    TransactionInfo,
    TransactionStatus,
)


class Transaction(TrackedBase):
    """A quantity of service priced against a funding contract."""

    __tablename__ = "transactions"

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_transaction_amount_non_negative"),
        Index("idx_transaction_contract_status", "contract_id", "status"),
        Index("idx_transaction_resident", "resident_id"),
        UniqueConstraint("drawdown_key", name="uq_transaction_drawdown_key"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    resident_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("residents.id"),
        nullable=False,
    )

    contract_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("funding_contracts.id"),
        nullable=False,
    )

    occurred_at: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        doc="Service date; compared with the contract window for is_orphaned",
    )

    description: Mapped[str | None] = mapped_column(String(500))
    support_item_code: Mapped[str | None] = mapped_column(String(50))

    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=TransactionStatus.DRAFT.value,
    )

    is_orphaned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Provenance for scheduler-generated transactions
    drawdown_key: Mapped[str | None] = mapped_column(String(200))
    automation_run_id: Mapped[UUID | None] = mapped_column(UUIDString())

    posted_at: Mapped[datetime | None] = mapped_column()
    posted_by: Mapped[str | None] = mapped_column(String(200))

    voided_at: Mapped[datetime | None] = mapped_column()
    voided_by: Mapped[str | None] = mapped_column(String(200))
    void_reason: Mapped[str | None] = mapped_column(String(1000))

    def to_dto(self) -> TransactionInfo:
        return TransactionInfo(
            id=self.id,
            organization_id=self.organization_id,
            resident_id=self.resident_id,
            contract_id=self.contract_id,
            occurred_at=self.occurred_at,
            quantity=self.quantity,
            unit_price=self.unit_price,
            amount=self.amount,
            status=TransactionStatus(self.status),
            is_orphaned=bool(self.is_orphaned),
            description=self.description,
            support_item_code=self.support_item_code,
            drawdown_key=self.drawdown_key,
            automation_run_id=self.automation_run_id,
            posted_at=self.posted_at,
            posted_by=self.posted_by,
            voided_at=self.voided_at,
            voided_by=self.voided_by,
            void_reason=self.void_reason,
            created_by=self.created_by,
            created_at=self.created_at,
        )

    def __repr__(self) -> str:
        return f"<Transaction {self.id} {self.status} {self.amount}>"


class TransactionAuditEntry(Base):
    """Append-only record of something that happened to a transaction."""

    __tablename__ = "transaction_audit_entries"

    __table_args__ = (
        UniqueConstraint("transaction_id", "sequence", name="uq_audit_transaction_sequence"),
    )

    transaction_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, index=True)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    action: Mapped[str] = mapped_column(String(30), nullable=False)
    actor: Mapped[str] = mapped_column(String(200), nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    detail: Mapped[dict[str, Any] | None] = mapped_column(JSON)

    def to_dto(self) -> AuditEntryInfo:
        return AuditEntryInfo(
            id=self.id,
            transaction_id=self.transaction_id,
            sequence=self.sequence,
            action=AuditAction(self.action),
            actor=self.actor,
            recorded_at=self.recorded_at,
            detail=dict(self.detail or {}),
        )
