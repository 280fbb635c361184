"""Database layer - engine, base classes, column types and immutability."""

from funding_kernel.db.base import Base, TrackedBase, UTCDateTime, UUIDString
from funding_kernel.db.engine import create_tables, get_engine, get_session, session_scope
from funding_kernel.db.types import LongText, Money, ShortCode

__all__ = [
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UTCDateTime",
    "UUIDString",
    "Money",
    "ShortCode",
    "LongText",
]
