"""
Input validation layer.

Responsibility:
    Turns raw request mappings into typed, frozen input DTOs and reports
    every problem at once as a tagged result: ``Ok(value)`` or
    ``Invalid(issues)``.  Services call the ``*_issues`` checks again on the
    DTOs they receive, so a DTO built by hand is held to the same rules.

Architecture position:
    Kernel > Domain -- pure, no I/O, no ORM.

Guarantees:
    - Parsing never raises for bad input; it returns Invalid.
    - ``unwrap`` / ``require_valid`` raise ``ValidationError`` carrying the
      issues, before any state mutation is attempted.
    - Money fields are Decimal; floats are refused.
    - Money fields carry at most MONEY_DECIMAL_PLACES decimal places, the
      scale of the Numeric columns, so what is returned is what is stored.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Generic, TypeVar, Union
from uuid import UUID

from funding_kernel.db.types import MONEY_DECIMAL_PLACES, round_money, to_decimal
from funding_kernel.domain.types import (
    BulkAction,
    ContractStatus,
    DrawdownRate,
    FundingType,
)
from funding_kernel.exceptions import ValidationError

T = TypeVar("T")


# =============================================================================
# Result types
# =============================================================================


@dataclass(frozen=True)
class ValidationIssue:
    """A single problem with one input field."""

    field: str
    message: str
    code: str = "invalid"


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def is_valid(self) -> bool:
        return True


@dataclass(frozen=True)
class Invalid:
    issues: tuple[ValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return False


ValidationResult = Union[Ok[T], Invalid]


def unwrap(result: ValidationResult[T]) -> T:
    """Return the parsed value, or raise ValidationError with the issues."""
    if isinstance(result, Invalid):
        raise ValidationError(result.issues)
    return result.value


def require_valid(issues: Iterable[ValidationIssue]) -> None:
    """Raise ValidationError if there are any issues."""
    issues = tuple(issues)
    if issues:
        raise ValidationError(issues)


# =============================================================================
# Input DTOs
# =============================================================================


@dataclass(frozen=True)
class ContractCreateInput:
    resident_id: UUID
    contract_type: FundingType
    original_amount: Decimal
    start_date: date
    drawdown_rate: DrawdownRate = DrawdownRate.DAILY
    auto_drawdown: bool = False
    end_date: date | None = None
    organization_id: UUID | None = None
    description: str | None = None
    support_item_code: str | None = None
    daily_support_item_cost: Decimal | None = None


@dataclass(frozen=True)
class RenewalInput:
    amount: Decimal
    start_date: date
    end_date: date | None = None
    description: str | None = None


@dataclass(frozen=True)
class ContractDetailsPatch:
    """Editable non-monetary contract fields; None means unchanged."""

    description: str | None = None
    end_date: date | None = None
    renewal_date: date | None = None
    auto_drawdown: bool | None = None
    support_item_code: str | None = None
    daily_support_item_cost: Decimal | None = None


@dataclass(frozen=True)
class TransactionCreateInput:
    resident_id: UUID
    contract_id: UUID
    occurred_at: date
    quantity: Decimal
    unit_price: Decimal
    amount: Decimal | None = None
    description: str | None = None
    support_item_code: str | None = None
    drawdown_key: str | None = None
    automation_run_id: UUID | None = None

    @property
    def resolved_amount(self) -> Decimal:
        """Explicit amount, else quantity x unit_price rounded to the stored scale."""
        if self.amount is not None:
            return self.amount
        return line_amount(self.quantity, self.unit_price)


@dataclass(frozen=True)
class TransactionPatch:
    """Editable draft fields; None means unchanged."""

    occurred_at: date | None = None
    quantity: Decimal | None = None
    unit_price: Decimal | None = None
    amount: Decimal | None = None
    description: str | None = None
    support_item_code: str | None = None

    def is_empty(self) -> bool:
        return all(getattr(self, f) is None for f in self.__dataclass_fields__)


@dataclass(frozen=True)
class BulkRequest:
    transaction_ids: tuple[UUID, ...]
    action: BulkAction
    reason: str | None = None


# =============================================================================
# Semantic checks (shared by parsers and services)
# =============================================================================


def line_amount(quantity: Decimal, unit_price: Decimal) -> Decimal:
    """quantity x unit_price, rounded half-up to the money column scale."""
    return round_money(quantity * unit_price, MONEY_DECIMAL_PLACES)


def _non_negative(field: str, value: Decimal | None) -> list[ValidationIssue]:
    if value is not None and value < 0:
        return [ValidationIssue(field, "must not be negative", "negative_amount")]
    return []


def _precision(field: str, value: Decimal | None) -> list[ValidationIssue]:
    if value is not None and value.as_tuple().exponent < -MONEY_DECIMAL_PLACES:
        return [
            ValidationIssue(
                field,
                f"must have at most {MONEY_DECIMAL_PLACES} decimal places",
                "too_precise",
            )
        ]
    return []


def _money(field: str, value: Decimal | None) -> list[ValidationIssue]:
    return _non_negative(field, value) + _precision(field, value)


def _window(start: date | None, end: date | None) -> list[ValidationIssue]:
    if start is not None and end is not None and end < start:
        return [ValidationIssue("end_date", "must not be before start_date", "invalid_window")]
    return []


def contract_input_issues(inp: ContractCreateInput) -> tuple[ValidationIssue, ...]:
    issues = _money("original_amount", inp.original_amount)
    issues += _money("daily_support_item_cost", inp.daily_support_item_cost)
    issues += _window(inp.start_date, inp.end_date)
    return tuple(issues)


def renewal_input_issues(inp: RenewalInput) -> tuple[ValidationIssue, ...]:
    issues = _money("amount", inp.amount)
    issues += _window(inp.start_date, inp.end_date)
    return tuple(issues)


def contract_patch_issues(
    patch: ContractDetailsPatch, start_date: date,
) -> tuple[ValidationIssue, ...]:
    issues = _money("daily_support_item_cost", patch.daily_support_item_cost)
    issues += _window(start_date, patch.end_date)
    return tuple(issues)


def transaction_input_issues(inp: TransactionCreateInput) -> tuple[ValidationIssue, ...]:
    issues: list[ValidationIssue] = []
    if inp.quantity <= 0:
        issues.append(ValidationIssue("quantity", "must be greater than zero", "non_positive"))
    issues += _precision("quantity", inp.quantity)
    issues += _money("unit_price", inp.unit_price)
    issues += _money("amount", inp.amount)
    return tuple(issues)


def transaction_patch_issues(patch: TransactionPatch) -> tuple[ValidationIssue, ...]:
    issues: list[ValidationIssue] = []
    if patch.is_empty():
        issues.append(ValidationIssue("patch", "no fields to update", "empty_patch"))
    if patch.quantity is not None and patch.quantity <= 0:
        issues.append(ValidationIssue("quantity", "must be greater than zero", "non_positive"))
    issues += _precision("quantity", patch.quantity)
    issues += _money("unit_price", patch.unit_price)
    issues += _money("amount", patch.amount)
    return tuple(issues)


def void_reason_issues(reason: str | None) -> tuple[ValidationIssue, ...]:
    if reason is None or not reason.strip():
        return (ValidationIssue("reason", "a void reason is required", "required"),)
    return ()


def bulk_request_issues(req: BulkRequest) -> tuple[ValidationIssue, ...]:
    issues: list[ValidationIssue] = []
    if not req.transaction_ids:
        issues.append(
            ValidationIssue("transaction_ids", "at least one transaction id is required", "required")
        )
    if req.action == BulkAction.VOID:
        issues += void_reason_issues(req.reason)
    return tuple(issues)


# =============================================================================
# Parsers (raw mapping -> typed input)
# =============================================================================


def parse_boolean(raw: Any) -> bool:
    """A bool, or the string "true" or "false" in any case.

    Raises:
        ValueError: Anything else.
    """
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str) and raw.lower() in ("true", "false"):
        return raw.lower() == "true"
    raise ValueError("must be a boolean")


class _FieldReader:
    """Collects coercion issues while reading fields out of a mapping."""

    def __init__(self, data: Mapping[str, Any]):
        self._data = data
        self.issues: list[ValidationIssue] = []

    def _read(self, name: str, required: bool, convert: Callable[[Any], Any]) -> Any:
        raw = self._data.get(name)
        if raw is None or raw == "":
            if required:
                self.issues.append(ValidationIssue(name, "is required", "required"))
            return None
        try:
            return convert(raw)
        except (TypeError, ValueError) as exc:
            self.issues.append(ValidationIssue(name, str(exc), "invalid_type"))
            return None

    def uuid(self, name: str, required: bool = True) -> UUID | None:
        return self._read(name, required, lambda v: v if isinstance(v, UUID) else UUID(str(v)))

    def decimal(self, name: str, required: bool = True) -> Decimal | None:
        return self._read(name, required, to_decimal)

    def date(self, name: str, required: bool = True) -> date | None:
        return self._read(
            name, required, lambda v: v if isinstance(v, date) else date.fromisoformat(str(v))
        )

    def enum(self, name: str, enum_cls, required: bool = True, default=None):
        value = self._read(name, required and default is None, enum_cls)
        return default if value is None else value

    def boolean(self, name: str, default: bool | None = False) -> bool | None:
        raw = self._data.get(name)
        if raw is None:
            return default
        try:
            return parse_boolean(raw)
        except ValueError as exc:
            self.issues.append(ValidationIssue(name, str(exc), "invalid_type"))
            return default

    def text(self, name: str, max_length: int = 500) -> str | None:
        raw = self._data.get(name)
        if raw is None:
            return None
        if not isinstance(raw, str):
            self.issues.append(ValidationIssue(name, "must be a string", "invalid_type"))
            return None
        if len(raw) > max_length:
            self.issues.append(
                ValidationIssue(name, f"must be at most {max_length} characters", "too_long")
            )
            return None
        return raw


def _finish(reader: _FieldReader, build: Callable[[], T], check) -> ValidationResult[T]:
    if reader.issues:
        return Invalid(tuple(reader.issues))
    value = build()
    semantic = check(value)
    if semantic:
        return Invalid(tuple(semantic))
    return Ok(value)


def parse_contract_create(data: Mapping[str, Any]) -> ValidationResult[ContractCreateInput]:
    r = _FieldReader(data)
    resident_id = r.uuid("resident_id")
    contract_type = r.enum("contract_type", FundingType)
    original_amount = r.decimal("original_amount")
    start_date = r.date("start_date")
    end_date = r.date("end_date", required=False)
    drawdown_rate = r.enum("drawdown_rate", DrawdownRate, default=DrawdownRate.DAILY)
    auto_drawdown = r.boolean("auto_drawdown")
    organization_id = r.uuid("organization_id", required=False)
    description = r.text("description")
    support_item_code = r.text("support_item_code", max_length=50)
    daily_cost = r.decimal("daily_support_item_cost", required=False)
    return _finish(
        r,
        lambda: ContractCreateInput(
            resident_id=resident_id,
            contract_type=contract_type,
            original_amount=original_amount,
            start_date=start_date,
            end_date=end_date,
            drawdown_rate=drawdown_rate,
            auto_drawdown=auto_drawdown,
            organization_id=organization_id,
            description=description,
            support_item_code=support_item_code,
            daily_support_item_cost=daily_cost,
        ),
        contract_input_issues,
    )


def parse_renewal(data: Mapping[str, Any]) -> ValidationResult[RenewalInput]:
    r = _FieldReader(data)
    amount = r.decimal("amount")
    start_date = r.date("start_date")
    end_date = r.date("end_date", required=False)
    description = r.text("description")
    return _finish(
        r,
        lambda: RenewalInput(
            amount=amount, start_date=start_date, end_date=end_date, description=description,
        ),
        renewal_input_issues,
    )


def parse_contract_status(value: Any) -> ValidationResult[ContractStatus]:
    try:
        return Ok(ContractStatus(value))
    except ValueError:
        allowed = ", ".join(s.value for s in ContractStatus)
        return Invalid((ValidationIssue("status", f"must be one of {allowed}", "invalid_choice"),))


def parse_transaction_create(data: Mapping[str, Any]) -> ValidationResult[TransactionCreateInput]:
    r = _FieldReader(data)
    resident_id = r.uuid("resident_id")
    contract_id = r.uuid("contract_id")
    occurred_at = r.date("occurred_at")
    quantity = r.decimal("quantity")
    unit_price = r.decimal("unit_price")
    amount = r.decimal("amount", required=False)
    description = r.text("description")
    support_item_code = r.text("support_item_code", max_length=50)
    return _finish(
        r,
        lambda: TransactionCreateInput(
            resident_id=resident_id,
            contract_id=contract_id,
            occurred_at=occurred_at,
            quantity=quantity,
            unit_price=unit_price,
            amount=amount,
            description=description,
            support_item_code=support_item_code,
        ),
        transaction_input_issues,
    )


def parse_transaction_patch(data: Mapping[str, Any]) -> ValidationResult[TransactionPatch]:
    r = _FieldReader(data)
    occurred_at = r.date("occurred_at", required=False)
    quantity = r.decimal("quantity", required=False)
    unit_price = r.decimal("unit_price", required=False)
    amount = r.decimal("amount", required=False)
    description = r.text("description")
    support_item_code = r.text("support_item_code", max_length=50)
    return _finish(
        r,
        lambda: TransactionPatch(
            occurred_at=occurred_at,
            quantity=quantity,
            unit_price=unit_price,
            amount=amount,
            description=description,
            support_item_code=support_item_code,
        ),
        transaction_patch_issues,
    )


def parse_bulk_request(data: Mapping[str, Any]) -> ValidationResult[BulkRequest]:
    r = _FieldReader(data)
    action = r.enum("action", BulkAction)
    reason = r.text("reason", max_length=1000)
    raw_ids = data.get("transaction_ids")
    ids: list[UUID] = []
    if not isinstance(raw_ids, (list, tuple)):
        r.issues.append(ValidationIssue("transaction_ids", "must be a list", "invalid_type"))
    else:
        for index, raw in enumerate(raw_ids):
            try:
                ids.append(raw if isinstance(raw, UUID) else UUID(str(raw)))
            except (TypeError, ValueError):
                r.issues.append(
                    ValidationIssue(f"transaction_ids[{index}]", "not a valid id", "invalid_type")
                )
    return _finish(
        r,
        lambda: BulkRequest(transaction_ids=tuple(ids), action=action, reason=reason),
        bulk_request_issues,
    )
