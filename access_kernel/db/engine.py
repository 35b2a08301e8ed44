"""
Module: access_kernel.db.engine
Responsibility: SQLAlchemy engine construction, session factory management,
    and transactional scope utilities.
Architecture position: Kernel > DB.  May import from db/base.py.  Imports the
    model modules only inside create_tables/drop_tables so Base.metadata is
    complete.

Invariants enforced:
    - PostgreSQL runs at READ COMMITTED with a pre-pinged QueuePool.  The
      approval request CAS guard is a single conditional UPDATE, which is
      safe at this isolation level.
    - SQLite is accepted for development and tests.  In-memory SQLite uses
      a StaticPool so every session sees the same database.
    - ``session_scope()`` owns commit/rollback for callers.  The only
      service that commits on its own is the approval request lifecycle,
      and only when constructed with ``auto_commit=True``.
    - Effects queued with ``defer_until_commit()`` run only after the
      session commits (``session_scope()`` or ``run_post_commit()``) and
      are dropped when it rolls back.

Failure modes:
    - RuntimeError if get_engine/get_session/get_session_factory is called
      before init_engine_from_url().
"""

import atexit
from contextlib import contextmanager
from typing import Callable, Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from access_kernel.logging_config import get_logger

logger = get_logger("db.engine")

# Module-level default engine for deployments that want one
_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def build_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Build an engine for a PostgreSQL or SQLite URL without touching module state.

    Args:
        database_url: ``postgresql+psycopg2://...`` or ``sqlite:///...``.
        echo: If True, log all SQL statements.
        pool_size: PostgreSQL pool size.
        max_overflow: PostgreSQL connections beyond pool_size.
        pool_pre_ping: Test connections before use.
        pool_timeout: Seconds to wait for a pooled connection.
        pool_recycle: Seconds after which a connection is recycled.
    """
    if database_url.startswith("sqlite"):
        in_memory = ":memory:" in database_url or database_url.rstrip("/") == "sqlite:"
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool if in_memory else None,
        )

        @event.listens_for(engine, "connect")
        def _sqlite_pragmas(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA busy_timeout=10000")
            if not in_memory:
                cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

        dialect = "sqlite"
    else:
        engine = create_engine(
            database_url,
            echo=echo,
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            isolation_level="READ COMMITTED",
        )
        dialect = engine.dialect.name

    logger.info(
        "engine_initialized",
        extra={"dialect": dialect, "echo": echo},
    )
    return engine


def init_engine_from_url(database_url: str, **kwargs) -> Engine:
    """
    Initialize the module default engine and session factory.

    Idempotent: a second call replaces the first (the old engine is disposed).
    """
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = build_engine(database_url, **kwargs)
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)
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
    """Get a new session from the default factory."""
    return get_session_factory()()


def get_session_factory() -> sessionmaker[Session]:
    """
    Get the session factory.

    Useful for multi-threaded callers where each thread needs its own session.
    """
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


@contextmanager
def session_scope(
    factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    Commits on normal exit, rolls back and re-raises on exception, and
    always closes the session.

    Usage:
        with session_scope() as session:
            service = ApprovalRequestService(session, ...)
            service.approve(...)
    """
    session = (factory or get_session_factory())()
    logger.debug("transaction_started")
    try:
        yield session
        commit_with_effects(session)
        logger.debug("transaction_committed")
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


# =============================================================================
# Post-commit effects
# =============================================================================

_POST_COMMIT_KEY = "access_kernel.post_commit"


def _discard_post_commit(session: Session) -> None:
    queue = session.info.get(_POST_COMMIT_KEY)
    if queue:
        logger.info("post_commit_effects_discarded", extra={"count": len(queue)})
        queue.clear()


def defer_until_commit(session: Session, effect: Callable[[], None]) -> None:
    """
    Queue ``effect`` to run after the session's transaction commits.

    The queue lives in ``session.info``.  A rollback of the session empties
    it, so effects of a change that never became durable are never run.
    """
    queue = session.info.get(_POST_COMMIT_KEY)
    if queue is None:
        queue = session.info[_POST_COMMIT_KEY] = []
        event.listen(session, "after_rollback", _discard_post_commit)
    queue.append(effect)


def pending_post_commit(session: Session) -> int:
    return len(session.info.get(_POST_COMMIT_KEY) or ())


def run_post_commit(session: Session) -> int:
    """
    Run the effects queued on a session that has just committed.

    Call after ``session.commit()`` when the caller owns the transaction;
    ``commit_with_effects()`` and ``session_scope()`` do this themselves.
    Returns the number of effects run.
    """
    queue = session.info.get(_POST_COMMIT_KEY)
    if not queue:
        return 0
    effects = list(queue)
    queue.clear()
    for effect in effects:
        effect()
    logger.debug("post_commit_effects_run", extra={"count": len(effects)})
    return len(effects)


def commit_with_effects(session: Session) -> None:
    """Commit, run the queued effects, then commit whatever they flushed."""
    session.commit()
    if run_post_commit(session):
        session.commit()


def _import_models() -> None:
    import access_kernel.models  # noqa: F401


def create_tables(engine: Engine | None = None) -> None:
    """Create every table declared by the hub models."""
    from access_kernel.db.base import Base

    _import_models()
    Base.metadata.create_all(engine or get_engine())


def drop_tables(engine: Engine | None = None) -> None:
    """Drop all tables. Use with caution - primarily for testing."""
    from access_kernel.db.base import Base

    _import_models()
    Base.metadata.drop_all(engine or get_engine())


def reset_engine() -> None:
    """Dispose and forget the default engine. Useful for test cleanup."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
        _engine = None
    _SessionFactory = None


def _atexit_dispose():
    """Dispose the engine on process exit to release pooled connections."""
    if _engine is not None:
        _engine.dispose()


atexit.register(_atexit_dispose)
