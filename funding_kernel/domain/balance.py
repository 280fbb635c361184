"""
Balance Calculator -- pure functions over contract snapshots.

Responsibility:
    Drawdown percentage, renewal eligibility, balance aggregation and the
    balance impact of a prospective posting.  No side effects, no clock:
    callers pass ``as_of`` explicitly.

Architecture position:
    Kernel > Domain.  Imported by the contract service (summaries) and the
    transaction ledger (insufficient-balance decision).
"""

from collections.abc import Iterable
from datetime import date
from decimal import Decimal

from funding_kernel.db.types import ZERO, round_money
from funding_kernel.domain.types import (
    BalanceImpact,
    BalanceSummary,
    ContractInfo,
    ContractRates,
    ContractStatus,
)

HUNDRED = Decimal("100")
DEFAULT_RENEWAL_LOOKAHEAD_DAYS = 30


def drawdown_percentage(contract: ContractInfo) -> Decimal:
    """
    Share of the original amount already drawn, in percent.

    0 when the original amount is 0; never above 100.
    """
    if contract.original_amount == 0:
        return ZERO
    drawn = contract.original_amount - contract.current_balance
    return min(HUNDRED, drawn / contract.original_amount * HUNDRED)


def days_until_expiry(contract: ContractInfo, as_of: date) -> int | None:
    """Days from ``as_of`` to ``end_date``; None for open-ended contracts."""
    if contract.end_date is None:
        return None
    return (contract.end_date - as_of).days


def needs_renewal(
    contract: ContractInfo,
    as_of: date,
    lookahead_days: int = DEFAULT_RENEWAL_LOOKAHEAD_DAYS,
) -> bool:
    """Active and ending within the look-ahead window (already-ended excluded)."""
    if contract.contract_status != ContractStatus.ACTIVE:
        return False
    remaining = days_until_expiry(contract, as_of)
    if remaining is None:
        return False
    return 0 <= remaining <= lookahead_days


def balance_summary(
    contracts: Iterable[ContractInfo],
    as_of: date,
    lookahead_days: int = DEFAULT_RENEWAL_LOOKAHEAD_DAYS,
) -> BalanceSummary:
    total_original = ZERO
    total_current = ZERO
    active = 0
    expiring = 0
    for contract in contracts:
        total_original += contract.original_amount
        total_current += contract.current_balance
        if contract.contract_status == ContractStatus.ACTIVE:
            active += 1
        if needs_renewal(contract, as_of, lookahead_days):
            expiring += 1
    return BalanceSummary(
        total_original=total_original,
        total_current=total_current,
        total_drawn_down=total_original - total_current,
        active_contracts=active,
        expiring_soon=expiring,
    )


def balance_impact(contract: ContractInfo, amount: Decimal) -> BalanceImpact:
    """What posting ``amount`` against ``contract`` would leave behind."""
    after = contract.current_balance - amount
    return BalanceImpact(
        contract_id=contract.id,
        current_balance=contract.current_balance,
        amount=amount,
        balance_after=after,
        sufficient=after >= 0,
    )


def contract_rates(contract: ContractInfo) -> ContractRates | None:
    """
    Daily, weekly and fortnightly spend implied by the contract window.

    The window is inclusive of both ends.  Open-ended contracts have no
    implied rate and return None.
    """
    if contract.end_date is None:
        return None
    total_days = (contract.end_date - contract.start_date).days + 1
    daily = contract.original_amount / total_days
    return ContractRates(
        daily=round_money(daily),
        weekly=round_money(daily * 7),
        fortnightly=round_money(daily * 14),
        total_days=total_days,
    )
