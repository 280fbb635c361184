"""
Tests for ContractLifecycleService over the in-memory repository.

Covers creation, the explicit transition table, renewal chains, detail
edits, expiry, and drawdown bookkeeping.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from funding_kernel.domain.types import ContractStatus, DrawdownRate, FundingType
from funding_kernel.domain.validation import (
    ContractCreateInput,
    ContractDetailsPatch,
    RenewalInput,
)
from funding_kernel.exceptions import (
    ContractNotFoundError,
    CrossOrganizationError,
    InvalidTransitionError,
    ResidentNotFoundError,
    ValidationError,
)
from funding_kernel.services.contract_service import ContractLifecycleService
from tests.conftest import OTHER_ORG_ID, TEST_ACTOR, TEST_ORG_ID


@pytest.fixture
def service(memory_repo, clock):
    return ContractLifecycleService(memory_repo, clock)


@pytest.fixture
def resident(memory_repo, create_resident):
    return create_resident(memory_repo)


# =============================================================================
# Creation
# =============================================================================


class TestCreateContract:
    def _input(self, resident_id, **overrides):
        values = dict(
            resident_id=resident_id,
            contract_type=FundingType.GOVERNMENT,
            original_amount=Decimal("2500.00"),
            start_date=date(2026, 1, 1),
            end_date=date(2026, 6, 30),
        )
        values.update(overrides)
        return ContractCreateInput(**values)

    def test_creates_draft_with_full_balance(self, service, resident):
        info = service.create_contract(self._input(resident.id), TEST_ACTOR)
        assert info.contract_status == ContractStatus.DRAFT
        assert info.current_balance == Decimal("2500.00")
        assert info.original_amount == Decimal("2500.00")
        assert info.organization_id == TEST_ORG_ID
        assert info.parent_contract_id is None

    def test_unknown_resident(self, service):
        with pytest.raises(ResidentNotFoundError):
            service.create_contract(self._input(uuid4()), TEST_ACTOR)

    def test_organization_mismatch(self, service, resident):
        with pytest.raises(CrossOrganizationError) as exc_info:
            service.create_contract(
                self._input(resident.id, organization_id=OTHER_ORG_ID), TEST_ACTOR,
            )
        assert exc_info.value.code == "CROSS_ORGANIZATION"

    def test_matching_organization_is_accepted(self, service, resident):
        info = service.create_contract(
            self._input(resident.id, organization_id=TEST_ORG_ID), TEST_ACTOR,
        )
        assert info.organization_id == TEST_ORG_ID

    def test_window_checked(self, service, resident, memory_repo):
        with pytest.raises(ValidationError):
            service.create_contract(
                self._input(resident.id, end_date=date(2025, 12, 1)), TEST_ACTOR,
            )
        assert memory_repo.contracts == {}

    def test_logs_creation(self, service, resident, captured_logs):
        info = service.create_contract(self._input(resident.id), TEST_ACTOR)
        created = [r for r in captured_logs() if r["message"] == "contract_created"]
        assert created and created[0]["contract_id"] == str(info.id)


# =============================================================================
# Transitions
# =============================================================================


class TestTransitions:
    def test_activate_draft(self, service, memory_repo, resident, create_contract):
        draft = create_contract(memory_repo, resident, status=ContractStatus.DRAFT)
        active = service.activate(draft.id, TEST_ACTOR)
        assert active.contract_status == ContractStatus.ACTIVE
        assert active.current_balance == draft.original_amount

    def test_activate_non_draft_fails(self, service, memory_repo, resident, create_contract):
        active = create_contract(memory_repo, resident)
        with pytest.raises(InvalidTransitionError, match="Can only activate draft contracts"):
            service.activate(active.id, TEST_ACTOR)

    @pytest.mark.parametrize(
        "target", [ContractStatus.EXPIRED, ContractStatus.CANCELLED, ContractStatus.RENEWED],
    )
    def test_active_moves_on(self, service, memory_repo, resident, create_contract, target):
        active = create_contract(memory_repo, resident)
        assert service.transition(active.id, target, TEST_ACTOR).contract_status == target

    def test_transition_to_active_delegates_to_activate(
        self, service, memory_repo, resident, create_contract,
    ):
        draft = create_contract(memory_repo, resident, status=ContractStatus.DRAFT)
        info = service.transition(draft.id, ContractStatus.ACTIVE, TEST_ACTOR)
        assert info.contract_status == ContractStatus.ACTIVE

    def test_draft_can_be_cancelled(self, service, memory_repo, resident, create_contract):
        draft = create_contract(memory_repo, resident, status=ContractStatus.DRAFT)
        info = service.transition(draft.id, ContractStatus.CANCELLED, TEST_ACTOR)
        assert info.contract_status == ContractStatus.CANCELLED

    @pytest.mark.parametrize(
        "start, target",
        [
            (ContractStatus.DRAFT, ContractStatus.EXPIRED),
            (ContractStatus.DRAFT, ContractStatus.RENEWED),
            (ContractStatus.DRAFT, ContractStatus.DRAFT),
            (ContractStatus.ACTIVE, ContractStatus.ACTIVE),
            (ContractStatus.ACTIVE, ContractStatus.DRAFT),
            (ContractStatus.EXPIRED, ContractStatus.ACTIVE),
            (ContractStatus.CANCELLED, ContractStatus.ACTIVE),
            (ContractStatus.RENEWED, ContractStatus.CANCELLED),
        ],
    )
    def test_illegal_transitions(
        self, service, memory_repo, resident, create_contract, start, target,
    ):
        contract = create_contract(memory_repo, resident, status=start)
        with pytest.raises(InvalidTransitionError):
            service.transition(contract.id, target, TEST_ACTOR)
        assert service.get_contract(contract.id).contract_status == start

    def test_unknown_contract(self, service):
        with pytest.raises(ContractNotFoundError):
            service.transition(uuid4(), ContractStatus.EXPIRED, TEST_ACTOR)


# =============================================================================
# Renewal
# =============================================================================


class TestRenewal:
    def test_renewing_active_contract_creates_draft_child(
        self, service, memory_repo, resident, create_contract,
    ):
        parent = create_contract(
            memory_repo,
            resident,
            original_amount=Decimal("5000.00"),
            drawdown_rate=DrawdownRate.WEEKLY,
            auto_drawdown=True,
            daily_support_item_cost=Decimal("40.00"),
        )
        child = service.renew(
            parent.id,
            RenewalInput(amount=Decimal("5000.00"), start_date=date(2027, 1, 1)),
            TEST_ACTOR,
        )
        assert child.contract_status == ContractStatus.DRAFT
        assert child.parent_contract_id == parent.id
        assert child.current_balance == Decimal("5000.00")
        assert child.drawdown_rate == DrawdownRate.WEEKLY
        assert child.auto_drawdown is True
        assert child.daily_support_item_cost == Decimal("40.00")
        assert child.support_item_code == parent.support_item_code
        # parent untouched
        assert service.get_contract(parent.id).contract_status == ContractStatus.ACTIVE

    def test_only_active_contracts_renew(self, service, memory_repo, resident, create_contract):
        draft = create_contract(memory_repo, resident, status=ContractStatus.DRAFT)
        with pytest.raises(InvalidTransitionError, match="Can only renew active contracts"):
            service.renew(
                draft.id,
                RenewalInput(amount=Decimal("100"), start_date=date(2027, 1, 1)),
                TEST_ACTOR,
            )

    def test_unknown_parent(self, service):
        with pytest.raises(ContractNotFoundError):
            service.renew(
                uuid4(), RenewalInput(amount=Decimal("1"), start_date=date(2027, 1, 1)), TEST_ACTOR,
            )

    def test_complete_renewal_marks_parent_renewed(
        self, service, memory_repo, resident, create_contract, clock,
    ):
        parent = create_contract(memory_repo, resident)
        child = service.renew(
            parent.id, RenewalInput(amount=Decimal("800"), start_date=date(2027, 1, 1)), TEST_ACTOR,
        )
        service.activate(child.id, TEST_ACTOR)

        updated = service.complete_renewal(child.id, TEST_ACTOR)
        assert updated.id == parent.id
        assert updated.contract_status == ContractStatus.RENEWED
        assert updated.renewal_date == clock.today()

    def test_complete_renewal_requires_active_child(
        self, service, memory_repo, resident, create_contract,
    ):
        parent = create_contract(memory_repo, resident)
        child = service.renew(
            parent.id, RenewalInput(amount=Decimal("800"), start_date=date(2027, 1, 1)), TEST_ACTOR,
        )
        with pytest.raises(InvalidTransitionError):
            service.complete_renewal(child.id, TEST_ACTOR)

    def test_renewal_chain_root_first(self, service, memory_repo, resident, create_contract):
        root = create_contract(memory_repo, resident)
        second = service.renew(
            root.id, RenewalInput(amount=Decimal("900"), start_date=date(2027, 1, 1)), TEST_ACTOR,
        )
        service.activate(second.id, TEST_ACTOR)
        third = service.renew(
            second.id, RenewalInput(amount=Decimal("950"), start_date=date(2028, 1, 1)), TEST_ACTOR,
        )
        chain = service.renewal_chain(third.id)
        assert [c.id for c in chain] == [root.id, second.id, third.id]


# =============================================================================
# Details, expiry, drawdown bookkeeping
# =============================================================================


class TestDetailsAndExpiry:
    def test_update_details(self, service, memory_repo, resident, create_contract):
        contract = create_contract(memory_repo, resident)
        info = service.update_details(
            contract.id,
            ContractDetailsPatch(description="Core supports", auto_drawdown=True),
            TEST_ACTOR,
        )
        assert info.description == "Core supports"
        assert info.auto_drawdown is True
        assert info.original_amount == contract.original_amount

    def test_terminal_contract_cannot_be_edited(
        self, service, memory_repo, resident, create_contract,
    ):
        contract = create_contract(memory_repo, resident, status=ContractStatus.EXPIRED)
        with pytest.raises(InvalidTransitionError):
            service.update_details(contract.id, ContractDetailsPatch(description="x"), TEST_ACTOR)

    def test_expire_lapsed(self, service, memory_repo, resident, create_contract):
        lapsed = create_contract(memory_repo, resident, end_date=date(2026, 3, 31))
        current = create_contract(memory_repo, resident, end_date=date(2026, 12, 31))
        open_ended = create_contract(memory_repo, resident, end_date=None)

        expired = service.expire_lapsed(date(2026, 4, 1), TEST_ACTOR)

        assert [c.id for c in expired] == [lapsed.id]
        assert service.get_contract(lapsed.id).contract_status == ContractStatus.EXPIRED
        assert service.get_contract(current.id).contract_status == ContractStatus.ACTIVE
        assert service.get_contract(open_ended.id).contract_status == ContractStatus.ACTIVE

    def test_contract_ending_today_is_not_lapsed(
        self, service, memory_repo, resident, create_contract,
    ):
        create_contract(memory_repo, resident, end_date=date(2026, 4, 1))
        assert service.expire_lapsed(date(2026, 4, 1), TEST_ACTOR) == []

    def test_find_due_for_drawdown(self, service, memory_repo, resident, create_contract):
        due = create_contract(memory_repo, resident, auto_drawdown=True)
        create_contract(memory_repo, resident, auto_drawdown=False)
        create_contract(memory_repo, resident, auto_drawdown=True, status=ContractStatus.DRAFT)
        found = service.find_due_for_drawdown(date(2026, 1, 2))
        assert [c.id for c in found] == [due.id]

    def test_record_drawdown_never_moves_backwards(
        self, service, memory_repo, resident, create_contract,
    ):
        contract = create_contract(memory_repo, resident)
        service.record_drawdown(contract.id, date(2026, 1, 10), TEST_ACTOR)
        info = service.record_drawdown(contract.id, date(2026, 1, 5), TEST_ACTOR)
        assert info.last_drawdown_date == date(2026, 1, 10)

    def test_balance_summary_by_resident(
        self, service, memory_repo, resident, create_resident, create_contract,
    ):
        create_contract(memory_repo, resident, original_amount=Decimal("1000"))
        create_contract(memory_repo, resident, original_amount=Decimal("500"))
        other = create_resident(memory_repo, first_name="Sam")
        create_contract(memory_repo, other, original_amount=Decimal("9999"))

        summary = service.balance_summary(as_of=date(2026, 1, 1), resident_id=resident.id)
        assert summary.total_original == Decimal("1500")
        assert summary.active_contracts == 2

    def test_contracts_needing_renewal(self, service, memory_repo, resident, create_contract):
        soon = create_contract(memory_repo, resident, end_date=date(2026, 1, 20))
        create_contract(memory_repo, resident, end_date=date(2026, 12, 31))
        found = service.contracts_needing_renewal(as_of=date(2026, 1, 1))
        assert [c.id for c in found] == [soon.id]
