"""
Module: funding_kernel.models.contract
Responsibility: ORM persistence for funding contracts: the monetary
    allocation a resident's care draws down against, its lifecycle status,
    drawdown cadence, and its place in a renewal chain.
Architecture position: Kernel > Models.  May import from db/ and
    domain/types.py only.  MUST NOT import from services/ or repositories/.

Invariants enforced:
    - 0 <= current_balance <= original_amount (CHECK constraints; the ledger
      also checks before every write).
    - end_date >= start_date when end_date is set (CHECK constraint).
    - parent_contract_id is a one-directional pointer written once at insert
      (db/immutability.py blocks later changes), so chains cannot cycle.
    - version is the optimistic concurrency counter; SQLAlchemy adds
      "AND version = :expected" to every UPDATE.

Failure modes:
    - IntegrityError when a CHECK constraint is violated.
    - StaleDataError (translated to OptimisticLockError by the repository)
      when the row changed underneath an UPDATE.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from funding_kernel.db.base import TrackedBase, UUIDString
from funding_kernel.domain.types import (
    ContractInfo,
    ContractStatus,
    DrawdownRate,
    FundingType,
)


class FundingContract(TrackedBase):
    """A resident's funding allocation and its depleting balance."""

    __tablename__ = "funding_contracts"

    __table_args__ = (
        CheckConstraint("original_amount >= 0", name="ck_contract_original_non_negative"),
        CheckConstraint("current_balance >= 0", name="ck_contract_balance_non_negative"),
        CheckConstraint(
            "current_balance <= original_amount",
            name="ck_contract_balance_within_original",
        ),
        CheckConstraint(
            "end_date IS NULL OR end_date >= start_date",
            name="ck_contract_window_ordered",
        ),
        Index("idx_contract_resident", "resident_id"),
        Index("idx_contract_organization_status", "organization_id", "contract_status"),
        Index("idx_contract_parent", "parent_contract_id"),
    )

    # =========================================================================
    # Ownership
    # =========================================================================

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    resident_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("residents.id"),
        nullable=False,
    )

    # =========================================================================
    # Identification
    # =========================================================================

    contract_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        doc="FundingType value (NDIS, Government, Private, Family, Other)",
    )

    description: Mapped[str | None] = mapped_column(String(500))

    # =========================================================================
    # Money
    # =========================================================================

    original_amount: Mapped[Decimal] = mapped_column(nullable=False)

    current_balance: Mapped[Decimal] = mapped_column(
        nullable=False,
        doc="Mutated only by posting (decrement) and voiding (increment)",
    )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    contract_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ContractStatus.DRAFT.value,
    )

    start_date: Mapped[date] = mapped_column(Date, nullable=False)

    end_date: Mapped[date | None] = mapped_column(
        Date,
        doc="Open-ended when NULL",
    )

    renewal_date: Mapped[date | None] = mapped_column(Date)

    parent_contract_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("funding_contracts.id"),
        doc="Set once when this contract was produced by renewing another",
    )

    # =========================================================================
    # Drawdown schedule
    # =========================================================================

    drawdown_rate: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=DrawdownRate.DAILY.value,
    )

    auto_drawdown: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    last_drawdown_date: Mapped[date | None] = mapped_column(
        Date,
        doc="Last day covered by a generated drawdown",
    )

    support_item_code: Mapped[str | None] = mapped_column(String(50))

    daily_support_item_cost: Mapped[Decimal | None] = mapped_column()

    # =========================================================================
    # Concurrency
    # =========================================================================

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self) -> ContractInfo:
        return ContractInfo(
            id=self.id,
            organization_id=self.organization_id,
            resident_id=self.resident_id,
            contract_type=FundingType(self.contract_type),
            original_amount=self.original_amount,
            current_balance=self.current_balance,
            contract_status=ContractStatus(self.contract_status),
            drawdown_rate=DrawdownRate(self.drawdown_rate),
            auto_drawdown=bool(self.auto_drawdown),
            start_date=self.start_date,
            end_date=self.end_date,
            last_drawdown_date=self.last_drawdown_date,
            renewal_date=self.renewal_date,
            parent_contract_id=self.parent_contract_id,
            support_item_code=self.support_item_code,
            daily_support_item_cost=self.daily_support_item_cost,
            description=self.description,
            version=self.version or 1,
        )

    def __repr__(self) -> str:
        return f"<FundingContract {self.id} {self.contract_status} balance={self.current_balance}>"
