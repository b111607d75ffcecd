"""
Module: ledger_kernel.db.engine
Responsibility: SQLAlchemy engine initialization and session factory
    management.  This is the single point of database
    connection configuration for the ledger.
Architecture position: Kernel > DB.  May import from db/base.py.  MUST NOT
    import from services/, selectors/, domain/, or outer layers (except for
    create_tables/drop_tables which import models to register their tables).

Invariants enforced:
    - PostgreSQL: engine default isolation is READ COMMITTED; the transaction
      orchestrator raises it to SERIALIZABLE per transaction.
    - SQLite: every transaction is opened with ``BEGIN IMMEDIATE`` so that
      concurrent writers serialize on the database lock instead of failing
      late at commit.  pysqlite's own transaction handling is disabled so
      SAVEPOINT works.
    - Connection pooling with pre-ping to handle stale connections.

Failure modes:
    - RuntimeError if get_session_factory is called before
      init_engine_from_url().
    - Connection pool exhaustion if pool_size + max_overflow is exceeded.

Audit relevance:
    All ledger transactions flow through sessions created by this module.
"""

import atexit

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from ledger_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def _install_sqlite_locking(engine: Engine) -> None:
    """Make pysqlite emit BEGIN IMMEDIATE for every transaction."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    sqlite_busy_timeout: int = 30,
) -> Engine:
    """
    Create a configured engine without touching module state.

    SQLite URLs get ``check_same_thread=False`` (sessions are handed to
    worker threads) and a busy timeout; every other backend gets a
    QueuePool sized by the arguments.
    """
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=echo,
            pool_pre_ping=pool_pre_ping,
            connect_args={
                "check_same_thread": False,
                "timeout": sqlite_busy_timeout,
            },
        )
        _install_sqlite_locking(engine)
        return engine

    return create_engine(
        database_url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=pool_pre_ping,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
        isolation_level="READ COMMITTED",
    )


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Initialize the module-level engine from a database URL.

    Preconditions: database_url is a valid PostgreSQL or SQLite URL.
        A second call overwrites the first.
    Postconditions: Module-level _engine and _SessionFactory are initialized.

    Returns:
        SQLAlchemy Engine instance.
    """
    global _engine, _SessionFactory

    _engine = build_engine(
        database_url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=pool_pre_ping,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
    )

    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={
            "dialect": _engine.dialect.name,
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "echo": echo,
        },
    )

    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """
    Get the session factory for creating sessions.

    The transaction orchestrator and the SQL idempotency store each draw a
    fresh session per transaction from this factory.

    Raises:
        RuntimeError: If engine has not been initialized.
    """
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


def create_tables(engine: Engine) -> None:
    """
    Create all ledger tables.

    Imports ledger_kernel.models so Base.metadata knows every table.
    """
    from ledger_kernel.db.base import Base
    import ledger_kernel.models  # noqa: F401

    Base.metadata.create_all(engine)


def drop_tables(engine: Engine) -> None:
    """
    Drop all tables. Use with caution - primarily for testing.
    """
    from ledger_kernel.db.base import Base
    import ledger_kernel.models  # noqa: F401

    Base.metadata.drop_all(engine)


def _atexit_dispose():
    """Dispose the engine on process exit to release all pooled connections."""
    if _engine is not None:
        _engine.dispose()


atexit.register(_atexit_dispose)
