"""
Pytest fixtures for the funding ledger test suite.

Provides:
- In-memory SQLite engine and session factory with every table created
- An in-memory repository for fast service tests
- A deterministic clock
- Resident / contract factories that go through the real services
- Structured log capture

SQLite runs on a single shared connection (StaticPool), so sessions opened
one after another see each other's committed work.  Tests that need real
cross-thread contention build a file database under tmp_path instead.
"""

import json
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from funding_kernel.db.engine import create_tables
from funding_kernel.db.immutability import register_immutability_listeners
from funding_kernel.domain.clock import DeterministicClock
from funding_kernel.domain.types import ContractStatus, DrawdownRate, FundingType
from funding_kernel.domain.validation import ContractCreateInput
from funding_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from funding_kernel.models import Resident
from funding_kernel.repositories.memory import InMemoryFundingRepository
from funding_kernel.repositories.sqlalchemy_repository import sqlalchemy_unit_of_work
from funding_kernel.services.contract_service import ContractLifecycleService
from funding_kernel.services.locking import ContractLockManager


TEST_ACTOR = "user:test"
TEST_ORG_ID = uuid4()
OTHER_ORG_ID = uuid4()


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for contract locks"
    )


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture funding_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs):
            ...
            logs = captured_logs()
            assert any(r["message"] == "transaction_posted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("funding_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Immutability
# =============================================================================


@pytest.fixture(autouse=True)
def _immutability_listeners():
    register_immutability_listeners()
    yield


# =============================================================================
# Time, locks, repositories
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock(datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def locks():
    return ContractLockManager(timeout_seconds=2)


@pytest.fixture
def memory_repo(locks):
    return InMemoryFundingRepository(locks)


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    create_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def unit_of_work(session_factory, locks):
    """``with unit_of_work() as repo:`` commits on exit, rolls back on error."""

    def _uow():
        return sqlalchemy_unit_of_work(session_factory, locks)

    return _uow


# =============================================================================
# Factories
# =============================================================================


@pytest.fixture
def create_resident(clock):
    """Add a resident through any FundingRepository."""

    def _create(repo, organization_id=TEST_ORG_ID, first_name="Alex", last_name="Nguyen"):
        now = clock.now()
        resident = Resident(
            id=uuid4(),
            organization_id=organization_id,
            first_name=first_name,
            last_name=last_name,
            created_at=now,
            updated_at=now,
            created_by=TEST_ACTOR,
        )
        repo.add_resident(resident)
        repo.flush()
        return resident

    return _create


@pytest.fixture
def create_contract(clock):
    """
    Create a contract through ContractLifecycleService and move it to
    ``status`` (Active by default).  Returns the ContractInfo.
    """

    def _create(
        repo,
        resident,
        original_amount=Decimal("1000.00"),
        status=ContractStatus.ACTIVE,
        start_date=date(2026, 1, 1),
        end_date=date(2026, 12, 31),
        drawdown_rate=DrawdownRate.DAILY,
        auto_drawdown=False,
        daily_support_item_cost=None,
        support_item_code="01_011_0107_1_1",
        contract_type=FundingType.NDIS,
    ):
        service = ContractLifecycleService(repo, clock)
        info = service.create_contract(
            ContractCreateInput(
                resident_id=resident.id,
                contract_type=contract_type,
                original_amount=original_amount,
                start_date=start_date,
                end_date=end_date,
                drawdown_rate=drawdown_rate,
                auto_drawdown=auto_drawdown,
                support_item_code=support_item_code,
                daily_support_item_cost=daily_support_item_cost,
            ),
            TEST_ACTOR,
        )
        if status == ContractStatus.DRAFT:
            return info
        if status == ContractStatus.CANCELLED:
            return service.transition(info.id, ContractStatus.CANCELLED, TEST_ACTOR)
        info = service.activate(info.id, TEST_ACTOR)
        if status != ContractStatus.ACTIVE:
            info = service.transition(info.id, status, TEST_ACTOR)
        return info

    return _create


@pytest.fixture
def seeded(unit_of_work, create_resident, create_contract):
    """Commit a resident and an Active contract to SQLite; returns a factory."""

    def _seed(**contract_kwargs):
        with unit_of_work() as repo:
            resident = create_resident(repo)
            contract = create_contract(repo, resident, **contract_kwargs)
        return resident, contract

    return _seed
