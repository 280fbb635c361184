"""Automation runner strategies, keyed by automation type."""

from funding_batch.runners.base import (
    AutomationRunner,
    RunnerContext,
    RunnerRegistry,
    default_runner_registry,
)
from funding_batch.runners.contract_billing import ContractBillingRunner
from funding_batch.runners.contract_expiry import ContractExpiryRunner
from funding_batch.runners.recurring_transaction import RecurringTransactionRunner

__all__ = [
    "AutomationRunner",
    "ContractBillingRunner",
    "ContractExpiryRunner",
    "RecurringTransactionRunner",
    "RunnerContext",
    "RunnerRegistry",
    "default_runner_registry",
]
