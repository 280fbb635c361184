"""
BulkOperationCoordinator -- post or void a batch of transactions.

Contract:
    Each transaction id runs through ``TransactionLedger.post`` / ``void`` in
    its own unit of work.  A failed item rolls back only itself; items
    already applied stay applied.  Partial failure is a result, not an
    exception.

Architecture: funding_kernel/services.  Imports the ledger and the
    validation layer; owns no persistence of its own.

Invariants enforced:
    - Request-level problems (empty id list, void without a reason) raise
      ValidationError before any item is touched.
    - Duplicate ids are applied once, in first-seen order.
    - Each item takes its contract lock through the ledger, so bulk
      operations serialize with manual and scheduled posts.
"""

from __future__ import annotations

import time
from contextlib import AbstractContextManager
from typing import Callable, Iterable
from uuid import UUID

from funding_kernel.domain.clock import Clock, SystemClock
from funding_kernel.domain.types import (
    BulkAction,
    BulkItemError,
    BulkOperationResult,
)
from funding_kernel.domain.validation import (
    BulkRequest,
    bulk_request_issues,
    parse_bulk_request,
    require_valid,
    unwrap,
)
from funding_kernel.exceptions import FundingLedgerError
from funding_kernel.logging_config import LogContext, get_logger
from funding_kernel.repositories.base import FundingRepository
from funding_kernel.services.transaction_ledger import TransactionLedger

logger = get_logger("services.bulk")

UnitOfWorkFactory = Callable[[], AbstractContextManager[FundingRepository]]


def _unique(ids: Iterable[UUID]) -> list[UUID]:
    seen: set[UUID] = set()
    ordered = []
    for tx_id in ids:
        if tx_id not in seen:
            seen.add(tx_id)
            ordered.append(tx_id)
    return ordered


class BulkOperationCoordinator:
    """Best-effort batch post/void.

    Non-goals:
        - Not atomic across items.
        - No retries; a failed item is reported and left as it was.
    """

    def __init__(self, unit_of_work: UnitOfWorkFactory, clock: Clock | None = None):
        self._unit_of_work = unit_of_work
        self._clock = clock or SystemClock()

    def bulk_apply(
        self,
        transaction_ids: Iterable[UUID],
        action: BulkAction | str,
        actor: str,
        reason: str | None = None,
    ) -> BulkOperationResult:
        """Validate, then apply ``action`` to every id.

        Raises:
            ValidationError: Unknown action, no ids, or a void with no reason.
        """
        request = unwrap(parse_bulk_request({
            "transaction_ids": list(transaction_ids),
            "action": action.value if isinstance(action, BulkAction) else action,
            "reason": reason,
        }))
        return self.apply(request, actor)

    def apply(self, request: BulkRequest, actor: str) -> BulkOperationResult:
        require_valid(bulk_request_issues(request))
        start = time.monotonic()

        succeeded: list[str] = []
        errors: list[BulkItemError] = []

        for tx_id in _unique(request.transaction_ids):
            try:
                with LogContext.bind(transaction_id=tx_id), self._unit_of_work() as repo:
                    ledger = TransactionLedger(repo, self._clock)
                    if request.action == BulkAction.POST:
                        ledger.post(tx_id, actor)
                    else:
                        ledger.void(tx_id, request.reason, actor)
            except FundingLedgerError as exc:
                errors.append(BulkItemError(str(tx_id), exc.code, str(exc)))
                logger.info(
                    "bulk_item_failed",
                    extra={"transaction_id": str(tx_id), "error_code": exc.code},
                )
                continue
            succeeded.append(str(tx_id))

        result = BulkOperationResult(
            action=request.action,
            processed=len(succeeded),
            failed=len(errors),
            errors=tuple(errors),
            succeeded_ids=tuple(succeeded),
        )
        logger.info(
            "bulk_apply_completed",
            extra={
                "action": request.action.value,
                "processed": result.processed,
                "failed": result.failed,
                "outcome": result.outcome.value,
                "duration_ms": int((time.monotonic() - start) * 1000),
                "actor": actor,
            },
        )
        return result
