"""
BaseService -- abstract base for the ledger services.

Responsibility:
    Provides the common constructor for every service that mutates ledger
    state: an injected ``FundingRepository`` (the persistence port) and an
    injected ``Clock``.  Services persist via ``repository.flush()`` and never
    commit; the unit of work around them owns commit and rollback.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Failure modes:
    - A subclass that commits on its own breaks the all-or-nothing guarantee
      a rejected post or void relies on.
"""

from abc import ABC

from funding_kernel.domain.clock import Clock, SystemClock
from funding_kernel.repositories.base import FundingRepository


class BaseService(ABC):
    """
    Abstract base class for ledger services.

    Guarantees:
        - The service never commits or rolls back; the caller controls
          transaction boundaries.
        - All timestamps come from ``self.clock``.
    """

    def __init__(self, repository: FundingRepository, clock: Clock | None = None):
        """
        Initialize the service.

        Args:
            repository: Persistence port for the current unit of work.
            clock: Time source; defaults to the system clock.
        """
        self.repository = repository
        self.clock = clock or SystemClock()
