"""Persistence port and its implementations."""

from funding_kernel.repositories.base import FundingRepository
from funding_kernel.repositories.memory import InMemoryFundingRepository
from funding_kernel.repositories.sqlalchemy_repository import (
    SqlAlchemyFundingRepository,
    sqlalchemy_unit_of_work,
)

__all__ = [
    "FundingRepository",
    "InMemoryFundingRepository",
    "SqlAlchemyFundingRepository",
    "sqlalchemy_unit_of_work",
]
