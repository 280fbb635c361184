"""
Module: funding_kernel.db.engine
Responsibility: The process-wide engine and session factory used by the
    operation surface and the scheduler CLI.  Tests build their own engines
    and pass session factories in directly.
Architecture position: Kernel > DB.  create_tables() imports the ledger and
    scheduler model packages so Base.metadata names every table.

Dialects:
    - PostgreSQL (psycopg2) in production, READ COMMITTED.  Balance writes
      lock the contract row with SELECT ... FOR UPDATE; the scheduler claims
      automations with FOR UPDATE SKIP LOCKED.
    - SQLite for tests and local runs.  No row locks, so the in-process
      ContractLockManager and the contract version column carry
      serialization there.

Failure modes:
    - RuntimeError from get_engine/get_session_factory before
      init_engine_from_url().
"""

import atexit
from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from funding_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None

SQLITE_BUSY_TIMEOUT_SECONDS = 30


def engine_options(
    database_url: str,
    *,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> dict[str, Any]:
    """Keyword arguments for ``create_engine`` appropriate to the URL's dialect."""
    if make_url(database_url).get_backend_name() == "sqlite":
        # Scheduler threads and API workers share one file database.
        return {
            "echo": echo,
            "connect_args": {
                "check_same_thread": False,
                "timeout": SQLITE_BUSY_TIMEOUT_SECONDS,
            },
        }
    return {
        "echo": echo,
        "pool_size": pool_size,
        "max_overflow": max_overflow,
        "pool_timeout": pool_timeout,
        "pool_recycle": pool_recycle,
        "pool_pre_ping": True,
        "isolation_level": "READ COMMITTED",
    }


def init_engine_from_url(database_url: str, echo: bool = False, **pool: int) -> Engine:
    """
    Create the process engine and session factory, replacing any earlier one.

    Args:
        database_url: e.g. ``postgresql+psycopg2://ledger@db/ledger`` or
            ``sqlite:///funding_ledger.db``.
        echo: Log every SQL statement.
        **pool: ``pool_size``, ``max_overflow``, ``pool_timeout`` or
            ``pool_recycle``; ignored for SQLite.
    """
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()

    _engine = create_engine(database_url, **engine_options(database_url, echo=echo, **pool))
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    from funding_kernel.db.immutability import register_immutability_listeners

    register_immutability_listeners()

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={
            "dialect": _engine.dialect.name,
            "database": _engine.url.render_as_string(hide_password=True),
        },
    )
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Session factory for the process engine (one session per unit of work)."""
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope() -> Iterator[Session]:
    """
    One database transaction: commit on normal exit, roll back and re-raise
    on error, close either way.

        with session_scope() as session:
            AutomationService(session).create_automation(...)
    """
    with get_session() as session:
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            logger.warning("session_scope_rolled_back", exc_info=True)
            raise


def _metadata():
    from funding_kernel.db.base import Base
    import funding_kernel.models  # noqa: F401
    import funding_batch.models  # noqa: F401

    return Base.metadata


def create_tables(engine: Engine | None = None) -> None:
    """Create every ledger and scheduler table that does not exist yet."""
    _metadata().create_all(engine or get_engine())


def drop_tables(engine: Engine | None = None) -> None:
    """Drop every ledger and scheduler table.  Tests and local resets only."""
    _metadata().drop_all(engine or get_engine())


def reset_engine() -> None:
    """Dispose the process engine and forget the session factory."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


atexit.register(reset_engine)
