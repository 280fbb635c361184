"""
Typed Exception Hierarchy for the Funding Ledger.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the ledger (the HTTP layer, the scheduler, the bulk coordinator)
need to tell "this contract does not exist" apart from "this contract cannot
afford that transaction" without parsing message strings.  Every error here:

  1. Has its own class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes (not just a message string)

Example:
    try:
        ledger.post(transaction_id, actor="user-17")
    except InsufficientBalanceError as e:
        return {"error": e.code, "attempted": e.attempted, "available": e.available}

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    FundingLedgerError (base)
    |
    +-- NotFoundError
    |   +-- ContractNotFoundError
    |   +-- TransactionNotFoundError
    |   +-- ResidentNotFoundError
    |   +-- AutomationNotFoundError
    |
    +-- InvalidTransitionError
    |
    +-- BalanceError
    |   +-- InsufficientBalanceError
    |   +-- BalanceInvariantError
    |
    +-- ValidationError
    |   +-- CrossOrganizationError
    |
    +-- SchedulerError
    |   +-- SchedulerRunnerFailure
    |   +-- RunnerNotRegisteredError
    |   +-- SchedulerAuthorizationError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |   +-- ContractLockTimeoutError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- ConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Not found       | CONTRACT_NOT_FOUND          | Contract ID doesn't exist
                | TRANSACTION_NOT_FOUND       | Transaction ID doesn't exist
                | RESIDENT_NOT_FOUND          | Resident ID doesn't exist
                | AUTOMATION_NOT_FOUND        | Automation ID doesn't exist
----------------|-----------------------------|-----------------------------------------
Transition      | INVALID_TRANSITION          | State change not legal from current state
----------------|-----------------------------|-----------------------------------------
Balance         | INSUFFICIENT_BALANCE        | Posting amount exceeds contract balance
                | BALANCE_INVARIANT_VIOLATION | 0 <= balance <= original would break
----------------|-----------------------------|-----------------------------------------
Validation      | VALIDATION_ERROR            | Malformed input, rejected before mutation
                | CROSS_ORGANIZATION          | Reference crosses organization boundary
----------------|-----------------------------|-----------------------------------------
Scheduler       | SCHEDULER_RUNNER_FAILURE    | Automation runner threw or reported failure
                | RUNNER_NOT_REGISTERED       | No runner for automation type
                | SCHEDULER_UNAUTHORIZED      | Missing/incorrect scheduler secret
----------------|-----------------------------|-----------------------------------------
Concurrency     | OPTIMISTIC_LOCK_CONFLICT    | Contract row changed underneath a write
                | CONTRACT_LOCK_TIMEOUT       | Per-contract lock not acquired in time
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Modifying a posted/voided/audit record
----------------|-----------------------------|-----------------------------------------
Configuration   | CONFIGURATION_ERROR         | Settings file unreadable or invalid

===============================================================================
HANDLING PATTERNS
===============================================================================

1. NotFoundError and InvalidTransitionError are client errors and are never
   retried.

2. ConcurrencyError is the only category a caller may retry as-is.

3. Bulk operations never raise per-item errors; they report them:

    result = coordinator.bulk_apply(ids, BulkAction.VOID, reason="dup")
    for err in result.errors:
        print(err.transaction_id, err.code)
"""

from decimal import Decimal
from typing import Any


class FundingLedgerError(Exception):
    """
    Base exception for all funding ledger errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "FUNDING_LEDGER_ERROR"


# Not-found exceptions


class NotFoundError(FundingLedgerError):
    """Base exception for missing referenced entities."""

    code: str = "NOT_FOUND"
    entity_type: str = "Entity"

    def __init__(self, entity_id: Any):
        self.entity_id = str(entity_id)
        super().__init__(f"{self.entity_type} not found: {entity_id}")


class ContractNotFoundError(NotFoundError):
    """Funding contract with given ID was not found."""

    code: str = "CONTRACT_NOT_FOUND"
    entity_type: str = "Contract"


class TransactionNotFoundError(NotFoundError):
    """Transaction with given ID was not found."""

    code: str = "TRANSACTION_NOT_FOUND"
    entity_type: str = "Transaction"


class ResidentNotFoundError(NotFoundError):
    """Resident with given ID was not found."""

    code: str = "RESIDENT_NOT_FOUND"
    entity_type: str = "Resident"


class AutomationNotFoundError(NotFoundError):
    """Automation with given ID was not found."""

    code: str = "AUTOMATION_NOT_FOUND"
    entity_type: str = "Automation"


# State machine exceptions


class InvalidTransitionError(FundingLedgerError):
    """
    Requested state change is not legal from the current state.

    Raised for contracts (e.g. activating a non-Draft contract) and for
    transactions (e.g. posting a non-draft transaction).
    """

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        entity_type: str,
        entity_id: Any,
        current_status: str,
        requested: str,
        message: str | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.current_status = current_status
        self.requested = requested
        super().__init__(
            message
            or f"Cannot move {entity_type} {entity_id} from "
            f"{current_status} to {requested}"
        )


# Balance exceptions


class BalanceError(FundingLedgerError):
    """Base exception for contract balance errors."""

    code: str = "BALANCE_ERROR"


class InsufficientBalanceError(BalanceError):
    """Posting would take the contract balance below zero."""

    code: str = "INSUFFICIENT_BALANCE"

    def __init__(self, contract_id: Any, attempted: Decimal, available: Decimal):
        self.contract_id = str(contract_id)
        self.attempted = attempted
        self.available = available
        self.shortfall = attempted - available
        super().__init__(
            f"Insufficient balance. Would exceed by ${self.shortfall:.2f}"
        )


class BalanceInvariantError(BalanceError):
    """A balance mutation would leave [0, original_amount]."""

    code: str = "BALANCE_INVARIANT_VIOLATION"

    def __init__(
        self,
        contract_id: Any,
        original_amount: Decimal,
        resulting_balance: Decimal,
    ):
        self.contract_id = str(contract_id)
        self.original_amount = original_amount
        self.resulting_balance = resulting_balance
        super().__init__(
            f"Balance for contract {contract_id} would become "
            f"{resulting_balance}, outside [0, {original_amount}]"
        )


# Validation exceptions


class ValidationError(FundingLedgerError):
    """
    Malformed input rejected before any state mutation.

    ``issues`` is a tuple of ``ValidationIssue`` (field, message, code).
    """

    code: str = "VALIDATION_ERROR"

    def __init__(self, issues):
        self.issues = tuple(issues)
        detail = "; ".join(f"{i.field}: {i.message}" for i in self.issues)
        super().__init__(f"Validation failed: {detail}")


class CrossOrganizationError(ValidationError):
    """A reference points at an entity owned by another organization."""

    code: str = "CROSS_ORGANIZATION"

    def __init__(self, entity_type: str, entity_id: Any, expected_org: Any, actual_org: Any):
        from funding_kernel.domain.validation import ValidationIssue

        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.expected_org = str(expected_org)
        self.actual_org = str(actual_org)
        super().__init__((
            ValidationIssue(
                field="organization_id",
                message=(
                    f"{entity_type} {entity_id} belongs to organization "
                    f"{actual_org}, not {expected_org}"
                ),
                code="cross_organization",
            ),
        ))


# Scheduler exceptions


class SchedulerError(FundingLedgerError):
    """Base exception for billing automation scheduler errors."""

    code: str = "SCHEDULER_ERROR"


class SchedulerRunnerFailure(SchedulerError):
    """
    An automation's runner threw or returned a failed outcome.

    Recorded on the AutomationRun; never aborts sibling automations.
    """

    code: str = "SCHEDULER_RUNNER_FAILURE"

    def __init__(self, automation_id: Any, automation_type: str, reason: str):
        self.automation_id = str(automation_id)
        self.automation_type = automation_type
        self.reason = reason
        super().__init__(
            f"Automation {automation_id} ({automation_type}) failed: {reason}"
        )


class RunnerNotRegisteredError(SchedulerError):
    """No runner registered for the automation type."""

    code: str = "RUNNER_NOT_REGISTERED"

    def __init__(self, automation_type: str):
        self.automation_type = automation_type
        super().__init__(f"No runner registered for automation type: {automation_type}")


class SchedulerAuthorizationError(SchedulerError):
    """Scheduler invoked without the configured shared secret."""

    code: str = "SCHEDULER_UNAUTHORIZED"

    def __init__(self):
        super().__init__("Unauthorized scheduler invocation")


# Concurrency exceptions


class ConcurrencyError(FundingLedgerError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: Any):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


class ContractLockTimeoutError(ConcurrencyError):
    """The per-contract lock could not be acquired within the timeout."""

    code: str = "CONTRACT_LOCK_TIMEOUT"

    def __init__(self, contract_id: Any, timeout_seconds: float):
        self.contract_id = str(contract_id)
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Timed out after {timeout_seconds}s waiting for lock on contract {contract_id}"
        )


# Immutability exceptions


class ImmutabilityError(FundingLedgerError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Posted and voided transactions, audit entries, and the fixed columns of a
    funding contract cannot be changed once written.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Configuration exceptions


class ConfigurationError(FundingLedgerError):
    """Settings file is unreadable or contains invalid values."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"Invalid configuration in {source}: {reason}")
