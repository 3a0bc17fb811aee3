"""
Module: itad_kernel.db.engine
Responsibility: SQLAlchemy engine initialization, session factory management,
    and transactional scope utilities.  Single point of database connection
    configuration for the system.
Architecture position: Kernel > DB.  May import from db/base.py.
    create_tables() imports the models so Base.metadata is populated.

Invariants enforced:
    - Services never commit; session_scope() owns the commit-or-rollback.
    - SAVEPOINTs work on every supported backend.  SQLite's driver defers
      BEGIN and therefore breaks nested transactions; the engine is
      configured to emit BEGIN itself (see _enable_sqlite_savepoints).

Failure modes:
    - RuntimeError if get_engine/get_session is called before
      init_engine_from_url().
"""

import atexit
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from itad_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def _enable_sqlite_savepoints(engine: Engine) -> None:
    """Let SQLAlchemy, not pysqlite, control BEGIN so SAVEPOINT nests correctly."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_engine(database_url: str, echo: bool = False, **kwargs) -> Engine:
    """
    Create an engine for ``database_url`` without touching module state.

    SQLite engines get savepoint support; other backends get pre-ping
    pooling.
    """
    if database_url.startswith("sqlite"):
        engine = create_engine(database_url, echo=echo, **kwargs)
        _enable_sqlite_savepoints(engine)
        return engine

    kwargs.setdefault("pool_pre_ping", True)
    kwargs.setdefault("pool_recycle", 1800)
    return create_engine(database_url, echo=echo, **kwargs)


def init_engine_from_url(database_url: str, echo: bool = False, **kwargs) -> Engine:
    """
    Initialize the module-level engine and session factory.

    Postconditions: All subsequent get_engine/get_session calls use this
        engine.  A second call replaces the first.
    """
    global _engine, _SessionFactory

    _engine = build_engine(database_url, echo=echo, **kwargs)
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"dialect": _engine.dialect.name, "echo": echo},
    )

    return _engine


def get_engine() -> Engine:
    """
    Get the current engine instance.

    Raises:
        RuntimeError: If engine has not been initialized.
    """
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session() -> Session:
    """
    Get a new session instance.

    Raises:
        RuntimeError: If engine has not been initialized.
    """
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    Postconditions: On normal exit, session is committed and closed.
        On exception, session is rolled back and closed, and the
        exception is re-raised.

    Usage:
        with session_scope() as session:
            BulkOrchestrator.from_session(session).coordinator.run_bulk(...)
    """
    session = get_session()
    logger.debug("transaction_started")
    try:
        yield session
        session.commit()
        logger.debug("transaction_committed")
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables(engine: Engine | None = None) -> None:
    """Create all ITAD tables on ``engine`` (defaults to the module engine)."""
    from itad_kernel.db.base import Base
    from itad_kernel.models import asset, audit_entry  # noqa: F401

    Base.metadata.create_all(engine or get_engine())


def drop_tables(engine: Engine | None = None) -> None:
    """Drop all tables. Use with caution - primarily for testing."""
    from itad_kernel.db.base import Base

    Base.metadata.drop_all(engine or get_engine())


def reset_engine() -> None:
    """Reset the engine and session factory.  Useful for test cleanup."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
        _engine = None

    _SessionFactory = None


def _atexit_dispose():
    if _engine is not None:
        _engine.dispose()


atexit.register(_atexit_dispose)
