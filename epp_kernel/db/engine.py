"""
Module: epp_kernel.db.engine
Responsibility: SQLAlchemy engine initialization, session factory management,
    and transactional scope utilities.  Single point of database connection
    configuration for the whole system.
Architecture position: Kernel > DB.  May import from db/base.py.  MUST NOT
    import from services/, domain/, or outer layers.  create_tables()
    imports the kernel models; outer packages register their own tables on
    Base.metadata when they are imported.

Invariants enforced:
    - PostgreSQL in production (READ COMMITTED plus explicit FOR UPDATE on
      order and batch rows).  SQLite is supported for tests and local runs;
      its pysqlite driver is switched to explicit BEGIN so that the per-item
      SAVEPOINTs of the payroll batch behave like they do on PostgreSQL.
    - Services never commit.  session_scope() is the commit-or-rollback
      boundary.

Failure modes:
    - RuntimeError if get_engine/get_session/get_session_factory is called
      before init_engine_from_url().
    - OptimisticLockError from flush_or_conflict() when a versioned row was
      changed by another transaction.
"""

from contextlib import contextmanager
from typing import Any, Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import QueuePool, StaticPool

from epp_kernel.exceptions import OptimisticLockError
from epp_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def enable_sqlite_savepoints(engine: Engine) -> Engine:
    """
    Make pysqlite emit BEGIN explicitly so SAVEPOINT / ROLLBACK TO work.

    The driver otherwise defers BEGIN until the first DML statement and
    releases the outermost SAVEPOINT as a commit.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_autobegin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def build_engine(database_url: str, echo: bool = False, **pool_options: Any) -> Engine:
    """
    Create an engine for the given URL without registering it globally.

    SQLite URLs get a StaticPool for in-memory databases and the savepoint
    fix-up; every other backend gets a pre-pinged QueuePool running at
    READ COMMITTED.
    """
    if database_url.startswith("sqlite"):
        kwargs: dict[str, Any] = {"echo": echo}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite+pysqlite://"):
            kwargs["poolclass"] = StaticPool
            kwargs["connect_args"] = {"check_same_thread": False}
        return enable_sqlite_savepoints(create_engine(database_url, **kwargs))

    return create_engine(
        database_url,
        echo=echo,
        poolclass=QueuePool,
        pool_size=pool_options.get("pool_size", 20),
        max_overflow=pool_options.get("max_overflow", 10),
        pool_pre_ping=pool_options.get("pool_pre_ping", True),
        pool_timeout=pool_options.get("pool_timeout", 30),
        pool_recycle=pool_options.get("pool_recycle", 1800),
        isolation_level="READ COMMITTED",
    )


def init_engine_from_url(database_url: str, echo: bool = False, **pool_options: Any) -> Engine:
    """
    Initialize the module-level engine and session factory.

    A second call replaces the first.

    Args:
        database_url: SQLAlchemy URL (postgresql://... or sqlite://...).
        echo: If True, log all SQL statements.
        pool_options: pool_size, max_overflow, pool_pre_ping, pool_timeout,
            pool_recycle (ignored for SQLite).
    """
    global _engine, _SessionFactory

    _engine = build_engine(database_url, echo=echo, **pool_options)
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


def get_session_factory() -> sessionmaker[Session]:
    """
    Get the session factory (one session per thread / request).

    Raises:
        RuntimeError: If engine has not been initialized.
    """
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    Commits on normal exit; rolls back and re-raises on exception.

    Usage:
        with session_scope() as session:
            orchestrator = FinancingOrchestrator.from_session(session, config)
            orchestrator.resolve_level(level_id, decision, actor_id)
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


def flush_or_conflict(session: Session, entity_type: str, entity_id: Any) -> None:
    """
    Flush pending changes, translating a version mismatch into a typed error.

    Raises:
        OptimisticLockError: A versioned row was modified concurrently.
    """
    try:
        session.flush()
    except StaleDataError as exc:
        logger.warning(
            "optimistic_lock_conflict",
            extra={"entity_type": entity_type, "entity_id": str(entity_id)},
        )
        raise OptimisticLockError(entity_type, str(entity_id)) from exc


def _import_models() -> None:
    import epp_kernel.models  # noqa: F401


def create_tables() -> None:
    """
    Create the kernel tables plus every table registered on Base.metadata.

    The batch tables are registered by importing ``epp_batch``.

    Raises:
        RuntimeError: If engine is not initialized.
    """
    from epp_kernel.db.base import Base

    _import_models()
    Base.metadata.create_all(get_engine())


def drop_tables() -> None:
    """Drop all tables. Use with caution - primarily for testing."""
    from epp_kernel.db.base import Base

    _import_models()
    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory (test cleanup)."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
        _engine = None

    _SessionFactory = None
