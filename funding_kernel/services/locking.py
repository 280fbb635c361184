"""
ContractLockManager -- per-contract mutual exclusion.

Responsibility:
    Serializes every read-check-write of a contract's balance (post, void,
    bulk, scheduler drawdown).  A lock is taken on behalf of an *owner* (a
    SQLAlchemy Session or an in-memory repository) and is held until that
    owner's unit of work ends, so the balance a writer checked is the
    balance it commits against.

Architecture position:
    Kernel > Services -- imperative shell infrastructure used by the
    repositories.  On PostgreSQL it sits in front of SELECT ... FOR UPDATE;
    on SQLite it is the only row-level serialization there is.

Guarantees:
    - Re-entrant per owner: an owner locking the same contract twice holds
      it once.
    - Bounded: acquisition gives up after ``timeout_seconds`` with
      ContractLockTimeoutError.
    - Session-bound locks are released on the root transaction's end
      (commit, rollback or close), never on a SAVEPOINT.
    - A contract's mutex exists only while some owner holds or waits on it.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy import event
from sqlalchemy.orm import Session, SessionTransaction

from funding_kernel.exceptions import ContractLockTimeoutError
from funding_kernel.logging_config import get_logger

logger = get_logger("services.locking")

DEFAULT_LOCK_TIMEOUT_SECONDS = 30.0


class ContractLockManager:
    """Registry of one mutex per contract id."""

    def __init__(self, timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS):
        self.timeout_seconds = timeout_seconds
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        # contract id -> owners holding or waiting; a lock is dropped at zero
        self._users: dict[str, int] = {}
        # id(owner) -> (owner, held contract ids); keeping owner alive pins id()
        self._held: dict[int, tuple[Any, set[str]]] = {}

    def acquire(self, owner: Any, contract_id: Any, timeout: float | None = None) -> bool:
        """
        Lock ``contract_id`` for ``owner``.

        Returns:
            True if newly acquired, False if the owner already held it.

        Raises:
            ContractLockTimeoutError: Not acquired within the timeout.
        """
        key = str(contract_id)
        with self._guard:
            held = self._held.get(id(owner))
            if held is not None and key in held[1]:
                return False
            lock = self._locks.setdefault(key, threading.Lock())
            self._users[key] = self._users.get(key, 0) + 1

        wait = self.timeout_seconds if timeout is None else timeout
        if not lock.acquire(timeout=wait):
            with self._guard:
                self._forget(key)
            logger.warning(
                "contract_lock_timeout",
                extra={"contract_id": key, "timeout_seconds": wait},
            )
            raise ContractLockTimeoutError(key, wait)

        with self._guard:
            self._held.setdefault(id(owner), (owner, set()))[1].add(key)
        logger.debug("contract_lock_acquired", extra={"contract_id": key})
        return True

    def release_all(self, owner: Any) -> int:
        """Release everything ``owner`` holds.  Returns the number released."""
        with self._guard:
            entry = self._held.pop(id(owner), None)
            if entry is None:
                return 0
            for key in entry[1]:
                self._locks[key].release()
                self._forget(key)
        logger.debug("contract_locks_released", extra={"count": len(entry[1])})
        return len(entry[1])

    def _forget(self, key: str) -> None:
        """Drop one user of ``key``.  Caller holds ``_guard``."""
        remaining = self._users[key] - 1
        if remaining:
            self._users[key] = remaining
        else:
            del self._users[key]
            del self._locks[key]

    def held_by(self, owner: Any) -> frozenset[str]:
        with self._guard:
            entry = self._held.get(id(owner))
            return frozenset(entry[1]) if entry else frozenset()

    def is_locked(self, contract_id: Any) -> bool:
        with self._guard:
            lock = self._locks.get(str(contract_id))
        return lock is not None and lock.locked()

    # -------------------------------------------------------------------------
    # Session binding
    # -------------------------------------------------------------------------

    def acquire_for_session(self, session: Session, contract_id: Any) -> None:
        """Lock for the lifetime of the session's current root transaction."""
        if not session.in_transaction():
            session.begin()
        if self.acquire(session, contract_id):
            if not event.contains(session, "after_transaction_end", self._on_transaction_end):
                event.listen(session, "after_transaction_end", self._on_transaction_end)

    def _on_transaction_end(self, session: Session, transaction: SessionTransaction) -> None:
        if transaction.parent is None:
            self.release_all(session)

    @contextmanager
    def hold(self, contract_id: Any, timeout: float | None = None) -> Iterator[None]:
        """Hold one contract's lock for the duration of a ``with`` block."""
        owner = object()
        self.acquire(owner, contract_id, timeout)
        try:
            yield
        finally:
            self.release_all(owner)


_default_manager = ContractLockManager()


def default_lock_manager() -> ContractLockManager:
    """Process-wide manager shared by every repository that is not given one."""
    return _default_manager
