"""
ORM-level immutability enforcement for ledger records.

===============================================================================
WHY THIS EXISTS
===============================================================================

A posted transaction is the record that a contract's balance moved.  Editing
its amount after the fact would make the balance unexplainable, so once a
transaction leaves draft the only permitted change is the void itself.  The
audit trail is append-only from the moment it is written.

SQLAlchemy fires mapper events before UPDATE/DELETE statements are emitted:

    session.flush()
         |
         v
    [before_update] --> _check_*_immutability() --> ImmutabilityViolationError
         |
         v
    [before_delete] --> _check_*_delete() --------> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                 | When Immutable          | What may still change
-----------------------|-------------------------|------------------------------
Transaction            | After status = posted   | posted -> voided and the void
                       |                         | stamp (voided_at/by, reason)
Transaction            | After status = voided   | nothing
TransactionAuditEntry  | ALWAYS                  | nothing
FundingContract        | After insert            | everything except
                       |                         | parent_contract_id,
                       |                         | resident_id, organization_id

updated_at / updated_by are audit metadata and always allowed to change.

===============================================================================
USAGE
===============================================================================

    from funding_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup; init_engine_from_url does this

Tests that need to write a forbidden row on purpose may call
``unregister_immutability_listeners()`` and re-register afterwards.
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from funding_kernel.exceptions import ImmutabilityViolationError
from funding_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_METADATA = frozenset({"updated_at", "updated_by"})
_VOID_FIELDS = frozenset({"status", "voided_at", "voided_by", "void_reason"})
_CONTRACT_FIXED_FIELDS = ("parent_contract_id", "resident_id", "organization_id")


def _blocked(entity_type: str, entity_id, operation: str, reason: str, **extra):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            **extra,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _changed_columns(target) -> list[str]:
    insp = inspect(target)
    return [
        attr.key
        for attr in insp.mapper.column_attrs
        if attr.key not in _AUDIT_METADATA and insp.attrs[attr.key].history.has_changes()
    ]


def _check_transaction_immutability(mapper, connection, target):
    """
    Block edits to posted or voided transactions.

    The status the row had BEFORE this flush decides.  A draft may change
    anything (including draft -> posted, which is the posting itself).  A
    posted row may only move to voided and receive the void stamp.  A voided
    row is frozen.
    """
    status_history = get_history(target, "status")
    if status_history.deleted:
        old_status = status_history.deleted[0]
    else:
        old_status = target.status

    if old_status == "draft":
        return

    changed = _changed_columns(target)
    if not changed:
        return

    if old_status == "posted" and target.status == "voided":
        illegal = [key for key in changed if key not in _VOID_FIELDS]
        if not illegal:
            return
        field = illegal[0]
    else:
        field = changed[0]

    raise _blocked(
        "Transaction",
        target.id,
        "UPDATE",
        f"Cannot modify field '{field}' on {old_status} transaction",
        field=field,
    )


def _check_transaction_delete(mapper, connection, target):
    """Only drafts may be deleted."""
    if target.status != "draft":
        raise _blocked(
            "Transaction",
            target.id,
            "DELETE",
            f"{target.status.capitalize()} transactions cannot be deleted",
        )


def _check_audit_entry_immutability(mapper, connection, target):
    raise _blocked(
        "TransactionAuditEntry",
        target.id,
        "UPDATE",
        "Audit entries are append-only",
    )


def _check_audit_entry_delete(mapper, connection, target):
    raise _blocked(
        "TransactionAuditEntry",
        target.id,
        "DELETE",
        "Audit entries cannot be deleted",
    )


def _check_contract_fixed_columns(mapper, connection, target):
    """Ancestry and ownership are written once at insert."""
    insp = inspect(target)
    for key in _CONTRACT_FIXED_FIELDS:
        if insp.attrs[key].history.has_changes():
            raise _blocked(
                "FundingContract",
                target.id,
                "UPDATE",
                f"Field '{key}' cannot change after the contract is created",
                field=key,
            )


def register_immutability_listeners():
    """Register all immutability enforcement event listeners (idempotent)."""
    from funding_kernel.models import FundingContract, Transaction, TransactionAuditEntry

    for target, event_name, fn in _listeners(FundingContract, Transaction, TransactionAuditEntry):
        if not event.contains(target, event_name, fn):
            event.listen(target, event_name, fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that intentionally violate the rules.
    """
    from funding_kernel.models import FundingContract, Transaction, TransactionAuditEntry

    for target, event_name, fn in _listeners(FundingContract, Transaction, TransactionAuditEntry):
        _safe_remove_listener(target, event_name, fn)


def _listeners(contract_cls, transaction_cls, audit_cls):
    return (
        (transaction_cls, "before_update", _check_transaction_immutability),
        (transaction_cls, "before_delete", _check_transaction_delete),
        (audit_cls, "before_update", _check_audit_entry_immutability),
        (audit_cls, "before_delete", _check_audit_entry_delete),
        (contract_cls, "before_update", _check_contract_fixed_columns),
    )
