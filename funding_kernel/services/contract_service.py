"""
ContractLifecycleService -- funding contract state machine and renewal chains.

Responsibility:
    Creates funding contracts, moves them through
    Draft -> Active -> Expired/Cancelled/Renewed, produces renewal children,
    and answers the scheduler's "which contracts are due for drawdown?".

Architecture position:
    Kernel > Services -- imperative shell.
    Called by the operation surface (funding_services) and by the billing
    runners in funding_batch.  Depends only on the FundingRepository port.

Invariants enforced:
    - Only the transitions in domain/transitions.py are legal.
    - A new contract starts Draft with current_balance = original_amount.
    - A renewal child points at its parent; the pointer is written once, so
      a chain can never loop back on an ancestor.
    - Renewing never changes the parent.  Moving the parent to Renewed is a
      separate call (complete_renewal) made once the child is Active.
    - Contracts belong to the organization that owns their resident.
    - Status changes take the per-contract lock, so they serialize with
      posts and voids on the same contract.

Failure modes:
    - ResidentNotFoundError / ContractNotFoundError on missing references.
    - InvalidTransitionError on an illegal status change or renewal.
    - ValidationError / CrossOrganizationError on bad input.

Audit relevance:
    Every state change is logged with the contract id, the old and new
    status, and the actor.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from uuid import UUID, uuid4

from funding_kernel.domain import balance
from funding_kernel.domain.drawdown import is_drawdown_due
from funding_kernel.domain.transitions import can_transition_contract
from funding_kernel.domain.types import BalanceSummary, ContractInfo, ContractStatus
from funding_kernel.domain.validation import (
    ContractCreateInput,
    ContractDetailsPatch,
    RenewalInput,
    contract_input_issues,
    contract_patch_issues,
    renewal_input_issues,
    require_valid,
)
from funding_kernel.exceptions import (
    ContractNotFoundError,
    CrossOrganizationError,
    InvalidTransitionError,
    ResidentNotFoundError,
)
from funding_kernel.logging_config import get_logger
from funding_kernel.models import FundingContract
from funding_kernel.services.base import BaseService

logger = get_logger("services.contract")


class ContractLifecycleService(BaseService):
    """
    Contract Lifecycle Manager.

    Contract:
        Accepts typed inputs from funding_kernel.domain.validation and
        returns frozen ``ContractInfo`` DTOs, never ORM records.

    Non-goals:
        - Does NOT touch balances; only the TransactionLedger does.
        - Does NOT commit.
    """

    def __init__(self, repository, clock=None, renewal_lookahead_days: int = 30):
        super().__init__(repository, clock)
        self.renewal_lookahead_days = renewal_lookahead_days

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def _get(self, contract_id: UUID) -> FundingContract:
        contract = self.repository.get_contract(contract_id)
        if contract is None:
            raise ContractNotFoundError(contract_id)
        return contract

    def _lock(self, contract_id: UUID) -> FundingContract:
        contract = self.repository.lock_contract(contract_id)
        if contract is None:
            raise ContractNotFoundError(contract_id)
        return contract

    def get_contract(self, contract_id: UUID) -> ContractInfo:
        """
        Raises:
            ContractNotFoundError: If the contract doesn't exist.
        """
        return self._get(contract_id).to_dto()

    def list_for_resident(self, resident_id: UUID) -> list[ContractInfo]:
        return [c.to_dto() for c in self.repository.list_contracts(resident_id=resident_id)]

    def renewal_chain(self, contract_id: UUID) -> list[ContractInfo]:
        """Ancestors from the root of the chain down to ``contract_id``."""
        chain: list[ContractInfo] = []
        seen: set[UUID] = set()
        current: UUID | None = contract_id
        while current is not None:
            if current in seen:
                # Unreachable through this service; only hand-edited rows could loop.
                raise InvalidTransitionError(
                    "FundingContract", current, "chained", "chained",
                    message=f"Renewal chain of {contract_id} loops at {current}",
                )
            seen.add(current)
            contract = self._get(current)
            chain.append(contract.to_dto())
            current = contract.parent_contract_id
        chain.reverse()
        return chain

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    def create_contract(self, data: ContractCreateInput, actor: str) -> ContractInfo:
        """
        Create a Draft contract for a resident.

        Postconditions:
            - status Draft, current_balance == original_amount.
            - organization_id is the resident's organization.

        Raises:
            ValidationError: Negative amounts or end_date before start_date.
            ResidentNotFoundError: Unknown resident.
            CrossOrganizationError: ``data.organization_id`` is not the
                resident's organization.
        """
        require_valid(contract_input_issues(data))

        resident = self.repository.get_resident(data.resident_id)
        if resident is None:
            raise ResidentNotFoundError(data.resident_id)
        if data.organization_id is not None and data.organization_id != resident.organization_id:
            raise CrossOrganizationError(
                "Resident", resident.id, data.organization_id, resident.organization_id,
            )

        now = self.clock.now()
        contract = FundingContract(
            id=uuid4(),
            organization_id=resident.organization_id,
            resident_id=resident.id,
            contract_type=data.contract_type.value,
            description=data.description,
            original_amount=data.original_amount,
            current_balance=data.original_amount,
            contract_status=ContractStatus.DRAFT.value,
            start_date=data.start_date,
            end_date=data.end_date,
            drawdown_rate=data.drawdown_rate.value,
            auto_drawdown=data.auto_drawdown,
            support_item_code=data.support_item_code,
            daily_support_item_cost=data.daily_support_item_cost,
            created_at=now,
            updated_at=now,
            created_by=actor,
        )
        self.repository.add_contract(contract)
        self.repository.flush()

        logger.info(
            "contract_created",
            extra={
                "contract_id": str(contract.id),
                "resident_id": str(resident.id),
                "original_amount": str(data.original_amount),
                "actor": actor,
            },
        )
        return contract.to_dto()

    def renew(self, parent_contract_id: UUID, data: RenewalInput, actor: str) -> ContractInfo:
        """
        Create a Draft renewal of an Active contract.

        The child copies the parent's type, drawdown rate, auto-drawdown flag
        and support item fields, and takes its own amount and window from
        ``data``.  The parent is left as it is.

        Raises:
            ValidationError: Bad renewal amount or window.
            ContractNotFoundError: Unknown parent.
            InvalidTransitionError: Parent is not Active.
        """
        require_valid(renewal_input_issues(data))
        parent = self._get(parent_contract_id)
        if parent.contract_status != ContractStatus.ACTIVE.value:
            raise InvalidTransitionError(
                "FundingContract",
                parent.id,
                parent.contract_status,
                "renew",
                message=f"Can only renew active contracts (contract is {parent.contract_status})",
            )

        now = self.clock.now()
        child = FundingContract(
            id=uuid4(),
            organization_id=parent.organization_id,
            resident_id=parent.resident_id,
            contract_type=parent.contract_type,
            description=data.description if data.description is not None else parent.description,
            original_amount=data.amount,
            current_balance=data.amount,
            contract_status=ContractStatus.DRAFT.value,
            start_date=data.start_date,
            end_date=data.end_date,
            drawdown_rate=parent.drawdown_rate,
            auto_drawdown=parent.auto_drawdown,
            support_item_code=parent.support_item_code,
            daily_support_item_cost=parent.daily_support_item_cost,
            parent_contract_id=parent.id,
            created_at=now,
            updated_at=now,
            created_by=actor,
        )
        self.repository.add_contract(child)
        self.repository.flush()

        logger.info(
            "contract_renewed",
            extra={
                "contract_id": str(child.id),
                "parent_contract_id": str(parent.id),
                "amount": str(data.amount),
                "actor": actor,
            },
        )
        return child.to_dto()

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def _apply_status(
        self, contract: FundingContract, target: ContractStatus, actor: str,
    ) -> None:
        current = ContractStatus(contract.contract_status)
        if not can_transition_contract(current, target):
            raise InvalidTransitionError(
                "FundingContract", contract.id, current.value, target.value,
            )
        contract.contract_status = target.value
        contract.updated_at = self.clock.now()
        contract.updated_by = actor
        logger.info(
            "contract_status_changed",
            extra={
                "contract_id": str(contract.id),
                "from_status": current.value,
                "to_status": target.value,
                "actor": actor,
            },
        )

    def activate(self, contract_id: UUID, actor: str) -> ContractInfo:
        """
        Draft -> Active.

        Raises:
            ContractNotFoundError: Unknown contract.
            InvalidTransitionError: Contract is not Draft.
        """
        contract = self._lock(contract_id)
        if contract.contract_status != ContractStatus.DRAFT.value:
            raise InvalidTransitionError(
                "FundingContract",
                contract.id,
                contract.contract_status,
                ContractStatus.ACTIVE.value,
                message=f"Can only activate draft contracts (contract is {contract.contract_status})",
            )
        if contract.current_balance is None:
            contract.current_balance = contract.original_amount
        self._apply_status(contract, ContractStatus.ACTIVE, actor)
        self.repository.flush()
        return contract.to_dto()

    def transition(self, contract_id: UUID, new_status: ContractStatus, actor: str) -> ContractInfo:
        """
        Move a contract to ``new_status`` if the transition table allows it.

        Raises:
            ContractNotFoundError: Unknown contract.
            InvalidTransitionError: Transition not in the table.
        """
        if new_status == ContractStatus.ACTIVE:
            return self.activate(contract_id, actor)
        contract = self._lock(contract_id)
        self._apply_status(contract, new_status, actor)
        self.repository.flush()
        return contract.to_dto()

    def complete_renewal(self, child_contract_id: UUID, actor: str) -> ContractInfo:
        """
        Mark the parent of an activated renewal as Renewed.

        Returns the updated parent.

        Raises:
            ContractNotFoundError: Unknown child, or child has no parent.
            InvalidTransitionError: Child not Active, or parent not Active.
        """
        child = self._get(child_contract_id)
        if child.parent_contract_id is None:
            raise ContractNotFoundError(f"parent of {child_contract_id}")
        if child.contract_status != ContractStatus.ACTIVE.value:
            raise InvalidTransitionError(
                "FundingContract",
                child.id,
                child.contract_status,
                ContractStatus.RENEWED.value,
                message="Renewal can only complete once the renewing contract is active",
            )
        parent = self._lock(child.parent_contract_id)
        self._apply_status(parent, ContractStatus.RENEWED, actor)
        parent.renewal_date = self.clock.today()
        self.repository.flush()
        return parent.to_dto()

    def expire_lapsed(
        self, as_of: date, actor: str, organization_id: UUID | None = None,
    ) -> list[ContractInfo]:
        """Active contracts whose end_date is before ``as_of`` become Expired."""
        expired: list[ContractInfo] = []
        candidates = self.repository.list_contracts(
            organization_id=organization_id, statuses=(ContractStatus.ACTIVE,),
        )
        for candidate in candidates:
            if candidate.end_date is None or candidate.end_date >= as_of:
                continue
            contract = self._lock(candidate.id)
            if contract.contract_status != ContractStatus.ACTIVE.value:
                continue
            self._apply_status(contract, ContractStatus.EXPIRED, actor)
            expired.append(contract.to_dto())
        self.repository.flush()
        return expired

    # -------------------------------------------------------------------------
    # Details
    # -------------------------------------------------------------------------

    def update_details(
        self, contract_id: UUID, patch: ContractDetailsPatch, actor: str,
    ) -> ContractInfo:
        """
        Edit non-monetary fields of a Draft or Active contract.

        Raises:
            ContractNotFoundError: Unknown contract.
            InvalidTransitionError: Contract is in a terminal status.
            ValidationError: New end date before the start date.
        """
        contract = self._lock(contract_id)
        if contract.contract_status not in (ContractStatus.DRAFT.value, ContractStatus.ACTIVE.value):
            raise InvalidTransitionError(
                "FundingContract",
                contract.id,
                contract.contract_status,
                "update",
                message=f"Cannot edit a contract that is {contract.contract_status}",
            )
        require_valid(contract_patch_issues(patch, contract.start_date))

        for field in (
            "description",
            "end_date",
            "renewal_date",
            "auto_drawdown",
            "support_item_code",
            "daily_support_item_cost",
        ):
            value = getattr(patch, field)
            if value is not None:
                setattr(contract, field, value)
        contract.updated_at = self.clock.now()
        contract.updated_by = actor
        self.repository.flush()
        return contract.to_dto()

    # -------------------------------------------------------------------------
    # Drawdown support
    # -------------------------------------------------------------------------

    def find_due_for_drawdown(
        self, as_of: date, organization_id: UUID | None = None,
    ) -> list[ContractInfo]:
        """Active auto-drawdown contracts with at least one unbilled period ended."""
        contracts = self.repository.list_contracts(
            organization_id=organization_id,
            statuses=(ContractStatus.ACTIVE,),
            auto_drawdown=True,
        )
        return [c.to_dto() for c in contracts if is_drawdown_due(c.to_dto(), as_of)]

    def record_drawdown(self, contract_id: UUID, through_date: date, actor: str) -> ContractInfo:
        """Advance last_drawdown_date; never moves backwards."""
        contract = self._lock(contract_id)
        if contract.last_drawdown_date is None or through_date > contract.last_drawdown_date:
            contract.last_drawdown_date = through_date
            contract.updated_at = self.clock.now()
            contract.updated_by = actor
            self.repository.flush()
        return contract.to_dto()

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    def balance_summary(
        self,
        as_of: date | None = None,
        organization_id: UUID | None = None,
        resident_id: UUID | None = None,
        statuses: Sequence[ContractStatus] | None = None,
    ) -> BalanceSummary:
        contracts = self.repository.list_contracts(
            organization_id=organization_id, resident_id=resident_id, statuses=statuses,
        )
        return balance.balance_summary(
            (c.to_dto() for c in contracts),
            as_of or self.clock.today(),
            self.renewal_lookahead_days,
        )

    def contracts_needing_renewal(
        self, as_of: date | None = None, organization_id: UUID | None = None,
    ) -> list[ContractInfo]:
        day = as_of or self.clock.today()
        contracts = self.repository.list_contracts(
            organization_id=organization_id, statuses=(ContractStatus.ACTIVE,),
        )
        return [
            info for info in (c.to_dto() for c in contracts)
            if balance.needs_renewal(info, day, self.renewal_lookahead_days)
        ]
