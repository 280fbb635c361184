"""
Drawdown calendar -- pure period arithmetic for automatic drawdowns.

Periods are laid out from the contract's ``start_date`` so monthly periods
never drift on short months:

    period k covers [boundary(k - 1), boundary(k) - 1 day]
    boundary(k) = start + k days | start + 7k days | start + k months

A period is billable on its last day.  ``last_drawdown_date`` is the last day
already billed; a contract never drawn has billed nothing.  Billing never
runs past ``end_date``.

Each planned drawdown carries a ``drawdown_key`` naming the contract and the
exact days it covers.  The key is UNIQUE on transactions, which is what makes
a scheduler retry of the same period a no-op.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

from funding_kernel.domain.types import ContractInfo, ContractStatus, DrawdownRate

DEFAULT_MAX_PERIODS = 50
ONE_DAY = timedelta(days=1)


@dataclass(frozen=True)
class DrawdownPlan:
    contract_id: UUID
    period_start: date
    period_end: date
    periods: int
    quantity: Decimal
    unit_price: Decimal
    amount: Decimal
    drawdown_key: str


def add_months(day: date, months: int) -> date:
    """Same day-of-month ``months`` later, clamped to the month's last day."""
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def boundary(start: date, rate: DrawdownRate, k: int) -> date:
    """First day of period ``k + 1`` (``boundary(start, rate, 0) == start``)."""
    if rate == DrawdownRate.DAILY:
        return start + timedelta(days=k)
    if rate == DrawdownRate.WEEKLY:
        return start + timedelta(days=7 * k)
    return add_months(start, k)


def completed_periods(start: date, through: date, rate: DrawdownRate) -> int:
    """Number of whole periods that have ended on or before ``through``."""
    day_after = through + ONE_DAY
    if day_after <= start:
        return 0
    if rate == DrawdownRate.DAILY:
        return (day_after - start).days
    if rate == DrawdownRate.WEEKLY:
        return (day_after - start).days // 7
    months = (day_after.year - start.year) * 12 + (day_after.month - start.month)
    while months > 0 and add_months(start, months) > day_after:
        months -= 1
    return months


def billed_periods(contract: ContractInfo) -> int:
    if contract.last_drawdown_date is None:
        return 0
    return completed_periods(contract.start_date, contract.last_drawdown_date, contract.drawdown_rate)


def billing_horizon(contract: ContractInfo, as_of: date) -> date:
    """Latest day that may be billed: as_of, or the end date if earlier."""
    if contract.end_date is not None and contract.end_date < as_of:
        return contract.end_date
    return as_of


def next_drawdown_date(contract: ContractInfo) -> date:
    """Last day of the first unbilled period (the day it becomes billable)."""
    k = billed_periods(contract)
    return boundary(contract.start_date, contract.drawdown_rate, k + 1) - ONE_DAY


def is_drawdown_due(contract: ContractInfo, as_of: date) -> bool:
    """Active, auto-drawdown, funded, and at least one unbilled period ended."""
    if contract.contract_status != ContractStatus.ACTIVE or not contract.auto_drawdown:
        return False
    if contract.current_balance <= 0:
        return False
    return next_drawdown_date(contract) <= billing_horizon(contract, as_of)


def drawdown_key(contract_id, first_day: date, last_day: date) -> str:
    return f"drawdown:{contract_id}:{first_day.isoformat()}:{last_day.isoformat()}"


def plan_drawdown(
    contract: ContractInfo,
    as_of: date,
    unit_price: Decimal | None = None,
    max_periods: int = DEFAULT_MAX_PERIODS,
) -> DrawdownPlan | None:
    """
    Size the next drawdown for ``contract``, or None if nothing is due.

    With a ``daily_support_item_cost`` the quantity is the number of days
    covered (a weekly period is 7 units).  Without one, ``unit_price`` is a
    per-period price and the quantity is the number of periods.  Catch-up
    after a long gap is capped at ``max_periods``.

    Raises:
        ValueError: Neither a daily cost nor a unit price is available.
    """
    if not is_drawdown_due(contract, as_of):
        return None

    rate = contract.drawdown_rate
    billed = billed_periods(contract)
    due = completed_periods(contract.start_date, billing_horizon(contract, as_of), rate)
    periods = min(due - billed, max_periods)
    if periods <= 0:
        return None

    first_day = boundary(contract.start_date, rate, billed)
    if contract.last_drawdown_date is not None and contract.last_drawdown_date >= first_day:
        first_day = contract.last_drawdown_date + ONE_DAY
    last_day = boundary(contract.start_date, rate, billed + periods) - ONE_DAY

    if contract.daily_support_item_cost is not None:
        quantity = Decimal((last_day - first_day).days + 1)
        price = contract.daily_support_item_cost
    elif unit_price is not None:
        quantity = Decimal(periods)
        price = unit_price
    else:
        raise ValueError(
            f"Contract {contract.id} has no daily support item cost and no unit price was given"
        )

    return DrawdownPlan(
        contract_id=contract.id,
        period_start=first_day,
        period_end=last_day,
        periods=periods,
        quantity=quantity,
        unit_price=price,
        amount=quantity * price,
        drawdown_key=drawdown_key(contract.id, first_day, last_day),
    )
