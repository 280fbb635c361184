"""
Tests for TransactionLedger.

Posting is the only balance decrement and voiding its exact inverse;
rejected operations leave the contract and the transaction as they were.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from funding_kernel.domain.types import AuditAction, ContractStatus, TransactionStatus
from funding_kernel.domain.validation import TransactionCreateInput, TransactionPatch
from funding_kernel.exceptions import (
    ContractNotFoundError,
    CrossOrganizationError,
    InsufficientBalanceError,
    InvalidTransitionError,
    TransactionNotFoundError,
    ValidationError,
)
from funding_kernel.services.contract_service import ContractLifecycleService
from funding_kernel.services.transaction_ledger import TransactionLedger, is_outside_window
from tests.conftest import OTHER_ORG_ID, TEST_ACTOR


@pytest.fixture
def ledger(memory_repo, clock):
    return TransactionLedger(memory_repo, clock)


@pytest.fixture
def resident(memory_repo, create_resident):
    return create_resident(memory_repo)


@pytest.fixture
def contract(memory_repo, resident, create_contract):
    return create_contract(memory_repo, resident, original_amount=Decimal("1000.00"))


def _draft(ledger, resident, contract, amount="300.00", occurred_at=date(2026, 3, 1), **kw):
    return ledger.create(
        TransactionCreateInput(
            resident_id=resident.id,
            contract_id=contract.id,
            occurred_at=occurred_at,
            quantity=Decimal("1"),
            unit_price=Decimal(amount),
            **kw,
        ),
        TEST_ACTOR,
    )


def _balance(repo, contract):
    return repo.get_contract(contract.id).current_balance


# =============================================================================
# Drafts
# =============================================================================


class TestCreateDraft:
    def test_draft_has_no_balance_effect(self, ledger, memory_repo, resident, contract):
        tx = _draft(ledger, resident, contract)
        assert tx.status == TransactionStatus.DRAFT
        assert tx.amount == Decimal("300.00")
        assert tx.is_orphaned is False
        assert tx.support_item_code == contract.support_item_code
        assert _balance(memory_repo, contract) == Decimal("1000.00")

    def test_amount_from_quantity_and_price(self, ledger, resident, contract):
        tx = ledger.create(
            TransactionCreateInput(
                resident_id=resident.id,
                contract_id=contract.id,
                occurred_at=date(2026, 3, 1),
                quantity=Decimal("4"),
                unit_price=Decimal("12.50"),
            ),
            TEST_ACTOR,
        )
        assert tx.amount == Decimal("50.00")

    def test_price_beyond_stored_scale_is_rejected(self, ledger, resident, contract):
        with pytest.raises(ValidationError) as exc_info:
            _draft(ledger, resident, contract, amount="0.3333333333")
        assert [issue.field for issue in exc_info.value.issues] == ["unit_price"]
        assert ledger.list_for_contract(contract.id) == []

    def test_outside_window_is_orphaned(self, ledger, resident, contract, captured_logs):
        tx = _draft(ledger, resident, contract, occurred_at=date(2027, 2, 1))
        assert tx.is_orphaned is True
        created = [r for r in captured_logs() if r["message"] == "transaction_created"]
        assert created[0]["level"] == "WARNING"

    def test_before_start_is_orphaned(self, ledger, resident, contract):
        assert _draft(ledger, resident, contract, occurred_at=date(2025, 12, 31)).is_orphaned

    def test_window_edges_are_inside(self, memory_repo, contract):
        row = memory_repo.get_contract(contract.id)
        assert not is_outside_window(date(2026, 1, 1), row)
        assert not is_outside_window(date(2026, 12, 31), row)

    def test_unknown_contract(self, ledger, resident):
        with pytest.raises(ContractNotFoundError):
            ledger.create(
                TransactionCreateInput(
                    resident_id=resident.id,
                    contract_id=uuid4(),
                    occurred_at=date(2026, 3, 1),
                    quantity=Decimal("1"),
                    unit_price=Decimal("1"),
                ),
                TEST_ACTOR,
            )

    def test_resident_of_another_organization(
        self, ledger, memory_repo, contract, create_resident,
    ):
        outsider = create_resident(memory_repo, organization_id=OTHER_ORG_ID)
        with pytest.raises(CrossOrganizationError):
            _draft(ledger, outsider, contract)

    def test_resident_not_on_contract(self, ledger, memory_repo, contract, create_resident):
        neighbour = create_resident(memory_repo, first_name="Jo")
        with pytest.raises(CrossOrganizationError):
            _draft(ledger, neighbour, contract)

    def test_created_audit_entry(self, ledger, resident, contract):
        tx = _draft(ledger, resident, contract)
        trail = ledger.audit_trail(tx.id)
        assert [e.action for e in trail] == [AuditAction.CREATED]
        assert trail[0].actor == TEST_ACTOR


class TestEditDraft:
    def test_update_recomputes_amount(self, ledger, resident, contract):
        tx = _draft(ledger, resident, contract, amount="100.00")
        updated = ledger.update(tx.id, TransactionPatch(quantity=Decimal("3")), TEST_ACTOR)
        assert updated.amount == Decimal("300.00")

    def test_recomputed_amount_rounds_to_stored_scale(self, ledger, resident, contract):
        tx = _draft(ledger, resident, contract, amount="0.123456789")
        updated = ledger.update(tx.id, TransactionPatch(quantity=Decimal("0.5")), TEST_ACTOR)
        assert updated.amount == Decimal("0.061728395")

    def test_explicit_amount_is_kept(self, ledger, resident, contract):
        tx = _draft(ledger, resident, contract, amount="100.00")
        updated = ledger.update(
            tx.id, TransactionPatch(quantity=Decimal("3"), amount=Decimal("250.00")), TEST_ACTOR,
        )
        assert updated.amount == Decimal("250.00")

    def test_new_date_redecides_orphan_flag(self, ledger, resident, contract):
        tx = _draft(ledger, resident, contract)
        updated = ledger.update(tx.id, TransactionPatch(occurred_at=date(2027, 6, 1)), TEST_ACTOR)
        assert updated.is_orphaned is True

    def test_posted_cannot_be_updated_or_deleted(self, ledger, resident, contract):
        tx = _draft(ledger, resident, contract)
        ledger.post(tx.id, TEST_ACTOR)
        with pytest.raises(InvalidTransitionError, match="Can only update draft"):
            ledger.update(tx.id, TransactionPatch(description="x"), TEST_ACTOR)
        with pytest.raises(InvalidTransitionError, match="Can only delete draft"):
            ledger.delete(tx.id, TEST_ACTOR)

    def test_delete_draft_keeps_audit_trail(self, ledger, resident, contract):
        tx = _draft(ledger, resident, contract)
        ledger.delete(tx.id, TEST_ACTOR)
        with pytest.raises(TransactionNotFoundError):
            ledger.get(tx.id)
        assert len(ledger.audit_trail(tx.id)) == 1


# =============================================================================
# Post / void
# =============================================================================


class TestPostAndVoid:
    def test_post_decrements_balance(self, ledger, memory_repo, resident, contract):
        tx = _draft(ledger, resident, contract)
        posted = ledger.post(tx.id, TEST_ACTOR)
        assert posted.status == TransactionStatus.POSTED
        assert posted.posted_by == TEST_ACTOR
        assert posted.posted_at is not None
        assert _balance(memory_repo, contract) == Decimal("700.00")

    def test_overdraw_is_rejected_without_side_effects(
        self, ledger, memory_repo, resident, contract,
    ):
        ledger.post(_draft(ledger, resident, contract).id, TEST_ACTOR)
        big = _draft(ledger, resident, contract, amount="800.00")

        with pytest.raises(InsufficientBalanceError) as exc_info:
            ledger.post(big.id, TEST_ACTOR)

        assert str(exc_info.value) == "Insufficient balance. Would exceed by $100.00"
        assert exc_info.value.shortfall == Decimal("100.00")
        assert _balance(memory_repo, contract) == Decimal("700.00")
        assert ledger.get(big.id).status == TransactionStatus.DRAFT
        assert [e.action for e in ledger.audit_trail(big.id)] == [AuditAction.CREATED]

    def test_exact_balance_can_be_drawn(self, ledger, memory_repo, resident, contract):
        ledger.post(_draft(ledger, resident, contract, amount="1000.00").id, TEST_ACTOR)
        assert _balance(memory_repo, contract) == Decimal("0")

    def test_void_restores_balance(self, ledger, memory_repo, resident, contract):
        tx = _draft(ledger, resident, contract)
        ledger.post(tx.id, TEST_ACTOR)
        voided = ledger.void(tx.id, "  Entered twice ", TEST_ACTOR)
        assert voided.status == TransactionStatus.VOIDED
        assert voided.void_reason == "Entered twice"
        assert _balance(memory_repo, contract) == Decimal("1000.00")

    def test_audit_trail_order(self, ledger, resident, contract):
        tx = _draft(ledger, resident, contract)
        ledger.post(tx.id, TEST_ACTOR)
        ledger.void(tx.id, "Wrong resident", "user:other")

        trail = ledger.audit_trail(tx.id)
        assert [e.action for e in trail] == [
            AuditAction.CREATED,
            AuditAction.VALIDATED,
            AuditAction.POSTED,
            AuditAction.BALANCE_UPDATED,
            AuditAction.VOIDED,
            AuditAction.BALANCE_UPDATED,
        ]
        assert [e.sequence for e in trail] == [1, 2, 3, 4, 5, 6]
        assert trail[3].detail == {"previous_balance": "1000.00", "new_balance": "700.00"}
        assert trail[-1].actor == "user:other"

    def test_post_twice(self, ledger, resident, contract):
        tx = _draft(ledger, resident, contract)
        ledger.post(tx.id, TEST_ACTOR)
        with pytest.raises(InvalidTransitionError, match="Can only post draft transactions"):
            ledger.post(tx.id, TEST_ACTOR)

    def test_void_draft(self, ledger, resident, contract):
        tx = _draft(ledger, resident, contract)
        with pytest.raises(InvalidTransitionError, match="Can only void posted transactions"):
            ledger.void(tx.id, "Mistake", TEST_ACTOR)

    def test_void_twice_changes_nothing(self, ledger, memory_repo, resident, contract):
        tx = _draft(ledger, resident, contract)
        ledger.post(tx.id, TEST_ACTOR)
        ledger.void(tx.id, "Mistake", TEST_ACTOR)
        with pytest.raises(InvalidTransitionError):
            ledger.void(tx.id, "Mistake", TEST_ACTOR)
        assert _balance(memory_repo, contract) == Decimal("1000.00")

    @pytest.mark.parametrize("reason", ["", "   "])
    def test_void_requires_reason(self, ledger, resident, contract, reason):
        tx = _draft(ledger, resident, contract)
        ledger.post(tx.id, TEST_ACTOR)
        with pytest.raises(ValidationError):
            ledger.void(tx.id, reason, TEST_ACTOR)
        assert ledger.get(tx.id).status == TransactionStatus.POSTED

    def test_cancelled_contract_refuses_posts(self, ledger, memory_repo, clock, resident, contract):
        tx = _draft(ledger, resident, contract)
        ContractLifecycleService(memory_repo, clock).transition(
            contract.id, ContractStatus.CANCELLED, TEST_ACTOR,
        )
        with pytest.raises(InvalidTransitionError, match="Cannot post against a cancelled contract"):
            ledger.post(tx.id, TEST_ACTOR)

    def test_unknown_transaction(self, ledger):
        with pytest.raises(TransactionNotFoundError):
            ledger.post(uuid4(), TEST_ACTOR)

    def test_balance_preview(self, ledger, resident, contract):
        ledger.post(_draft(ledger, resident, contract).id, TEST_ACTOR)
        impact = ledger.balance_preview(contract.id, Decimal("800.00"))
        assert not impact.sufficient
        assert impact.shortfall == Decimal("100.00")

    def test_list_for_contract_by_status(self, ledger, resident, contract):
        first = _draft(ledger, resident, contract, occurred_at=date(2026, 2, 1))
        _draft(ledger, resident, contract, occurred_at=date(2026, 2, 2))
        ledger.post(first.id, TEST_ACTOR)
        posted = ledger.list_for_contract(contract.id, TransactionStatus.POSTED)
        assert [t.id for t in posted] == [first.id]
        assert len(ledger.list_for_contract(contract.id)) == 2


# =============================================================================
# Against SQLite
# =============================================================================


class TestLedgerOnDatabase:
    def test_post_and_void_commit(self, seeded, unit_of_work, clock, captured_logs):
        resident, contract = seeded()

        with unit_of_work() as repo:
            tx = _draft(TransactionLedger(repo, clock), resident, contract)
        with unit_of_work() as repo:
            TransactionLedger(repo, clock).post(tx.id, TEST_ACTOR)
        with unit_of_work() as repo:
            assert _balance(repo, contract) == Decimal("700.00")

        with unit_of_work() as repo:
            TransactionLedger(repo, clock).void(tx.id, "Duplicate", TEST_ACTOR)
        with unit_of_work() as repo:
            assert _balance(repo, contract) == Decimal("1000.00")
            trail = TransactionLedger(repo, clock).audit_trail(tx.id)
            assert len(trail) == 6

        posted = [r for r in captured_logs() if r["message"] == "transaction_posted"]
        assert posted[0]["contract_id"] == str(contract.id)
        assert Decimal(posted[0]["new_balance"]) == Decimal("700")

    def test_returned_amount_matches_stored_amount(self, seeded, unit_of_work, clock):
        resident, contract = seeded()
        with unit_of_work() as repo:
            created = TransactionLedger(repo, clock).create(
                TransactionCreateInput(
                    resident_id=resident.id,
                    contract_id=contract.id,
                    occurred_at=date(2026, 3, 1),
                    quantity=Decimal("3"),
                    unit_price=Decimal("0.333333333"),
                ),
                TEST_ACTOR,
            )
            TransactionLedger(repo, clock).post(created.id, TEST_ACTOR)
        assert created.amount == Decimal("0.999999999")

        with unit_of_work() as repo:
            assert repo.get_transaction(created.id).amount == created.amount
            assert _balance(repo, contract) == Decimal("1000.00") - created.amount
            TransactionLedger(repo, clock).void(created.id, "Duplicate", TEST_ACTOR)
        with unit_of_work() as repo:
            assert _balance(repo, contract) == Decimal("1000.00")

    def test_rejected_post_rolls_back(self, seeded, unit_of_work, clock):
        resident, contract = seeded(original_amount=Decimal("100.00"))
        with unit_of_work() as repo:
            tx = _draft(TransactionLedger(repo, clock), resident, contract, amount="150.00")

        with pytest.raises(InsufficientBalanceError):
            with unit_of_work() as repo:
                TransactionLedger(repo, clock).post(tx.id, TEST_ACTOR)

        with unit_of_work() as repo:
            assert _balance(repo, contract) == Decimal("100.00")
            assert repo.get_transaction(tx.id).status == TransactionStatus.DRAFT.value

    def test_locks_released_after_commit(self, seeded, unit_of_work, clock, locks):
        resident, contract = seeded()
        with unit_of_work() as repo:
            tx = _draft(TransactionLedger(repo, clock), resident, contract)
            TransactionLedger(repo, clock).post(tx.id, TEST_ACTOR)
            assert locks.is_locked(contract.id)
        assert not locks.is_locked(contract.id)
