"""
Resident model.

Only the fields the ledger needs: the resident must exist, and its
organization is the owner of every contract and transaction raised for it.
"""

from uuid import UUID

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from funding_kernel.db.base import TrackedBase, UUIDString


class Resident(TrackedBase):
    """A person receiving care, owned by one organization."""

    __tablename__ = "residents"

    __table_args__ = (
        Index("idx_resident_organization", "organization_id"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)

    def __repr__(self) -> str:
        return f"<Resident {self.first_name} {self.last_name}>"
