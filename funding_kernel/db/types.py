"""
Module: funding_kernel.db.types
Responsibility: Annotated type aliases and helpers for monetary and short
    string columns.  Centralizes precision and rounding so that every model
    and service uses identical definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and repositories/.  MUST NOT import from any of those layers.

Invariants enforced:
    - Money is Numeric(38, 9).  Balance arithmetic is exact Decimal; rounding
      happens only where a rate is derived (round_money), never on post/void.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated

from sqlalchemy import Numeric, String

# Monetary amount: 38 digits total, 9 decimal places
Money = Annotated[Decimal, Numeric(38, 9)]

# Short identifier strings (statuses, codes)
ShortCode = Annotated[str, String(50)]

# Free text
LongText = Annotated[str, String(4000)]

MONEY_DECIMAL_PLACES = 9
CENT_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")


def to_decimal(value) -> Decimal:
    """
    Coerce an int, str or Decimal to Decimal.

    Floats are refused: they cannot represent cents exactly.

    Raises:
        TypeError: value is a float or bool.
        ValueError: value is not numeric or not finite.
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"Refusing to build money from {type(value).__name__}: {value!r}")
    elif isinstance(value, (int, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise ValueError(f"Not a decimal amount: {value!r}") from exc
    else:
        raise TypeError(f"Unsupported amount type: {type(value).__name__}")
    if not result.is_finite():
        raise ValueError(f"Amount must be finite: {value!r}")
    return result


def round_money(amount: Decimal, places: int = CENT_DECIMAL_PLACES) -> Decimal:
    """Round with ROUND_HALF_UP to the given number of places (cents by default)."""
    return amount.quantize(Decimal(1).scaleb(-places), rounding=DEFAULT_ROUNDING)
