"""
Tests for BulkOperationCoordinator.

Each item runs in its own unit of work: a failure is reported and rolled
back on its own, everything else stays applied.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from funding_kernel.domain.types import BulkAction, BulkOutcome, TransactionStatus
from funding_kernel.domain.validation import TransactionCreateInput
from funding_kernel.exceptions import ValidationError
from funding_kernel.services.bulk_service import BulkOperationCoordinator
from funding_kernel.services.transaction_ledger import TransactionLedger
from tests.conftest import TEST_ACTOR


@pytest.fixture
def ledger(memory_repo, clock):
    return TransactionLedger(memory_repo, clock)


@pytest.fixture
def coordinator(memory_repo, clock):
    return BulkOperationCoordinator(memory_repo.unit_of_work, clock)


@pytest.fixture
def drafts(memory_repo, ledger, create_resident, create_contract):
    """Three 100.00 drafts against one 1000.00 contract."""
    resident = create_resident(memory_repo)
    contract = create_contract(memory_repo, resident)
    ids = []
    for day in (1, 2, 3):
        tx = ledger.create(
            TransactionCreateInput(
                resident_id=resident.id,
                contract_id=contract.id,
                occurred_at=date(2026, 2, day),
                quantity=Decimal("1"),
                unit_price=Decimal("100.00"),
            ),
            TEST_ACTOR,
        )
        ids.append(tx.id)
    return contract, ids


class TestBulkPost:
    def test_posts_everything(self, coordinator, memory_repo, drafts):
        contract, ids = drafts
        result = coordinator.bulk_apply(ids, BulkAction.POST, TEST_ACTOR)
        assert result.processed == 3
        assert result.failed == 0
        assert result.success
        assert result.outcome == BulkOutcome.COMPLETE
        assert memory_repo.get_contract(contract.id).current_balance == Decimal("700.00")

    def test_duplicate_ids_applied_once(self, coordinator, memory_repo, drafts):
        contract, ids = drafts
        result = coordinator.bulk_apply([ids[0], ids[0], ids[1]], "post", TEST_ACTOR)
        assert result.processed == 2
        assert result.succeeded_ids == (str(ids[0]), str(ids[1]))
        assert memory_repo.get_contract(contract.id).current_balance == Decimal("800.00")

    def test_unknown_id_is_an_item_error(self, coordinator, drafts):
        _, ids = drafts
        missing = uuid4()
        result = coordinator.bulk_apply([ids[0], missing], BulkAction.POST, TEST_ACTOR)
        assert result.processed == 1
        assert result.outcome == BulkOutcome.PARTIAL
        assert result.errors[0].transaction_id == str(missing)
        assert result.errors[0].code == "TRANSACTION_NOT_FOUND"

    def test_insufficient_balance_stops_only_that_item(
        self, coordinator, memory_repo, ledger, drafts,
    ):
        contract, ids = drafts
        row = memory_repo.get_contract(contract.id)
        row.current_balance = Decimal("150.00")

        result = coordinator.bulk_apply(ids, BulkAction.POST, TEST_ACTOR)

        assert result.processed == 1
        assert result.failed == 2
        assert {e.code for e in result.errors} == {"INSUFFICIENT_BALANCE"}
        assert memory_repo.get_contract(contract.id).current_balance == Decimal("50.00")
        assert ledger.get(ids[1]).status == TransactionStatus.DRAFT


class TestBulkVoid:
    def test_already_voided_is_reported(self, coordinator, ledger, memory_repo, drafts):
        contract, ids = drafts
        for tx_id in ids:
            ledger.post(tx_id, TEST_ACTOR)
        ledger.void(ids[1], "Entered twice", TEST_ACTOR)

        result = coordinator.bulk_apply(ids, BulkAction.VOID, TEST_ACTOR, reason="Month reversal")

        assert result.processed == 2
        assert result.success is False
        assert len(result.errors) == 1
        assert result.errors[0].transaction_id == str(ids[1])
        assert result.errors[0].code == "INVALID_TRANSITION"
        assert memory_repo.get_contract(contract.id).current_balance == Decimal("1000.00")

    def test_void_without_reason_touches_nothing(self, coordinator, ledger, drafts):
        _, ids = drafts
        ledger.post(ids[0], TEST_ACTOR)
        with pytest.raises(ValidationError):
            coordinator.bulk_apply(ids, BulkAction.VOID, TEST_ACTOR)
        assert ledger.get(ids[0]).status == TransactionStatus.POSTED


class TestRequestValidation:
    def test_empty_id_list(self, coordinator):
        with pytest.raises(ValidationError):
            coordinator.bulk_apply([], BulkAction.POST, TEST_ACTOR)

    def test_unknown_action(self, coordinator, drafts):
        _, ids = drafts
        with pytest.raises(ValidationError):
            coordinator.bulk_apply(ids, "delete", TEST_ACTOR)

    def test_completion_is_logged(self, coordinator, drafts, captured_logs):
        _, ids = drafts
        coordinator.bulk_apply(ids[:1], BulkAction.POST, TEST_ACTOR)
        done = [r for r in captured_logs() if r["message"] == "bulk_apply_completed"]
        assert done[0]["processed"] == 1
        assert done[0]["outcome"] == "complete"
