"""
funding_services.ledger_api -- the ledger's operation surface.

Responsibility:
    Accepts raw mappings from an outer surface (HTTP handler, job, shell),
    validates them into typed inputs, and runs each operation inside its own
    unit of work: one database transaction, committed on success and rolled
    back on any error.  Returns frozen DTOs.

Architecture position:
    Services -- the top of the stack.  Composes funding_kernel services and
    the funding_batch scheduler; nothing below imports from here.

Invariants enforced:
    - Validation before mutation: a payload that fails validation raises
      ValidationError before a session is opened.
    - ``run_scheduler`` compares ``Authorization: Bearer <secret>`` in
      constant time whenever a scheduler secret is configured.

Failure modes:
    - Every FundingLedgerError raised by a service propagates unchanged after
      the unit of work has rolled back.
    - SchedulerAuthorizationError for a missing or wrong scheduler secret.

Usage:
    api = FundingLedgerAPI.from_settings(get_settings())
    contract = api.create_funding_contract({...}, actor="user:42")
"""

from __future__ import annotations

import hmac
from datetime import datetime
from typing import Any, Callable, Mapping
from uuid import UUID

from sqlalchemy.orm import Session

from funding_batch.domain.types import SchedulerTickResult
from funding_batch.runners.base import RunnerRegistry, default_runner_registry
from funding_batch.services.scheduler import AutomationScheduler
from funding_config.settings import LedgerSettings
from funding_kernel.domain.clock import Clock, SystemClock
from funding_kernel.domain.types import BulkOperationResult, ContractInfo, TransactionInfo
from funding_kernel.domain.validation import (
    parse_bulk_request,
    parse_contract_create,
    parse_contract_status,
    parse_renewal,
    parse_transaction_create,
    unwrap,
)
from funding_kernel.exceptions import SchedulerAuthorizationError
from funding_kernel.logging_config import LogContext, get_logger
from funding_kernel.repositories.sqlalchemy_repository import sqlalchemy_unit_of_work
from funding_kernel.services.bulk_service import BulkOperationCoordinator
from funding_kernel.services.contract_service import ContractLifecycleService
from funding_kernel.services.locking import ContractLockManager, default_lock_manager
from funding_kernel.services.transaction_ledger import TransactionLedger

logger = get_logger("services.api")

BEARER_PREFIX = "Bearer "


def verify_scheduler_secret(authorization: str | None, secret: str | None) -> None:
    """
    Check an ``Authorization`` header value against the scheduler secret.

    No configured secret means the check is disabled.

    Raises:
        SchedulerAuthorizationError: Header missing or not ``Bearer <secret>``.
    """
    if not secret:
        return
    expected = f"{BEARER_PREFIX}{secret}".encode()
    supplied = (authorization or "").encode()
    if not hmac.compare_digest(supplied, expected):
        logger.warning(
            "scheduler_authorization_rejected",
            extra={"header_present": bool(authorization)},
        )
        raise SchedulerAuthorizationError()


class FundingLedgerAPI:
    """
    Operation surface over a session factory.

    Non-goals:
        - No authentication beyond the scheduler secret; ``actor`` is
          trusted as given.
        - Does NOT hold a session between calls.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        locks: ContractLockManager | None = None,
        settings: LedgerSettings | None = None,
        registry: RunnerRegistry | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._locks = locks or default_lock_manager()
        self._settings = settings or LedgerSettings(database_url="")
        if registry is None:
            registry = default_runner_registry(self._settings.max_catch_up_periods)
        self._registry = registry

    @classmethod
    def from_settings(
        cls, settings: LedgerSettings, clock: Clock | None = None,
    ) -> "FundingLedgerAPI":
        """Initialise the process engine from ``settings`` and wrap it."""
        from funding_kernel.db.engine import get_session_factory, init_engine_from_url

        init_engine_from_url(settings.database_url)
        return cls(
            get_session_factory(),
            clock=clock,
            locks=ContractLockManager(timeout_seconds=settings.lock_timeout_seconds),
            settings=settings,
        )

    def _unit_of_work(self):
        return sqlalchemy_unit_of_work(self._session_factory, self._locks)

    def _contracts(self, repo) -> ContractLifecycleService:
        return ContractLifecycleService(
            repo, self._clock, renewal_lookahead_days=self._settings.renewal_lookahead_days,
        )

    # -------------------------------------------------------------------------
    # Contracts
    # -------------------------------------------------------------------------

    def create_funding_contract(self, payload: Mapping[str, Any], actor: str) -> ContractInfo:
        data = unwrap(parse_contract_create(payload))
        with LogContext.bind(actor_id=actor), self._unit_of_work() as repo:
            return self._contracts(repo).create_contract(data, actor)

    def renew_contract(
        self, parent_contract_id: UUID, payload: Mapping[str, Any], actor: str,
    ) -> ContractInfo:
        data = unwrap(parse_renewal(payload))
        with LogContext.bind(actor_id=actor, contract_id=parent_contract_id), \
                self._unit_of_work() as repo:
            return self._contracts(repo).renew(parent_contract_id, data, actor)

    def update_contract_status(self, contract_id: UUID, status: Any, actor: str) -> ContractInfo:
        """Apply a lifecycle transition (``status`` is a ContractStatus or its value)."""
        target = unwrap(parse_contract_status(status))
        with LogContext.bind(actor_id=actor, contract_id=contract_id), \
                self._unit_of_work() as repo:
            return self._contracts(repo).transition(contract_id, target, actor)

    def complete_renewal(self, child_contract_id: UUID, actor: str) -> ContractInfo:
        with LogContext.bind(actor_id=actor, contract_id=child_contract_id), \
                self._unit_of_work() as repo:
            return self._contracts(repo).complete_renewal(child_contract_id, actor)

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    def create_transaction(self, payload: Mapping[str, Any], actor: str) -> TransactionInfo:
        data = unwrap(parse_transaction_create(payload))
        with LogContext.bind(actor_id=actor), self._unit_of_work() as repo:
            return TransactionLedger(repo, self._clock).create(data, actor)

    def post_transaction(self, transaction_id: UUID, actor: str) -> TransactionInfo:
        with LogContext.bind(actor_id=actor), self._unit_of_work() as repo:
            return TransactionLedger(repo, self._clock).post(transaction_id, actor)

    def void_transaction(
        self, transaction_id: UUID, reason: str | None, actor: str,
    ) -> TransactionInfo:
        with LogContext.bind(actor_id=actor), self._unit_of_work() as repo:
            return TransactionLedger(repo, self._clock).void(transaction_id, reason, actor)

    def bulk_apply(self, payload: Mapping[str, Any], actor: str) -> BulkOperationResult:
        """Post or void many transactions; each id in its own unit of work."""
        request = unwrap(parse_bulk_request(payload))
        coordinator = BulkOperationCoordinator(self._unit_of_work, self._clock)
        with LogContext.bind(actor_id=actor):
            return coordinator.apply(request, actor)

    # -------------------------------------------------------------------------
    # Scheduler
    # -------------------------------------------------------------------------

    def run_scheduler(
        self, now: datetime | None = None, authorization: str | None = None,
    ) -> SchedulerTickResult:
        """
        One scheduler tick.

        Raises:
            SchedulerAuthorizationError: A secret is configured and
                ``authorization`` does not carry it.
        """
        verify_scheduler_secret(authorization, self._settings.scheduler_secret)
        scheduler = AutomationScheduler(
            self._session_factory,
            registry=self._registry,
            clock=self._clock,
            locks=self._locks,
            actor=self._settings.scheduler_actor,
            default_timezone=self._settings.default_timezone,
        )
        with LogContext.bind(actor_id=self._settings.scheduler_actor):
            return scheduler.tick(now)
