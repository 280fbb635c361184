"""
funding_services -- operation surface for external callers.

Dependency direction:
    funding_services -> funding_batch, funding_kernel, funding_config
    funding_kernel / funding_batch -> funding_services (FORBIDDEN)
"""

from funding_services.ledger_api import FundingLedgerAPI, verify_scheduler_secret

__all__ = ["FundingLedgerAPI", "verify_scheduler_secret"]
