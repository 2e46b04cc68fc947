"""
Engine and session management for the approval store.

One module-level engine and session factory, set up by
``init_engine_from_url()``.  The orchestrator and escalation timer take the
session factory and open one session per operation; ``session_scope()`` is
the commit-or-rollback wrapper for scripts and maintenance jobs.

Backends:
    - PostgreSQL (production): READ COMMITTED; the decision applier locks
      the chain row with SELECT ... FOR UPDATE.
    - SQLite (tests, single-process deployments): sessions may cross
      threads, writers wait on the file lock for ``sqlite_busy_timeout``
      seconds, and foreign keys are switched on per connection.

Sessions are created with ``expire_on_commit=False`` so DTOs can be built
from rows after the commit without a reload.
"""

import atexit
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from approval_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None

_NOT_INITIALIZED = "Engine not initialized. Call init_engine_from_url() first."


def _sqlite_connect(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    sqlite_busy_timeout: float = 30.0,
) -> Engine:
    """
    Create the engine and session factory for ``database_url``.

    Replaces any engine set up earlier without disposing it; call
    ``reset_engine()`` first to release its pooled connections.  The pool
    arguments apply to server databases only.
    """
    global _engine, _SessionFactory

    backend = make_url(database_url).get_backend_name()
    if backend == "sqlite":
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": sqlite_busy_timeout},
        )
        event.listen(engine, "connect", _sqlite_connect)
    else:
        engine = create_engine(
            database_url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            isolation_level="READ COMMITTED",
        )

    _engine = engine
    _SessionFactory = sessionmaker(bind=engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={
            "dialect": backend,
            "pool_size": None if backend == "sqlite" else pool_size,
            "echo": echo,
        },
    )
    return engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    if _SessionFactory is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _SessionFactory


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Session that commits on clean exit and rolls back (and re-raises) on error."""
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables(install_listeners: bool = True) -> None:
    """Create the approval tables; by default also install the immutability listeners."""
    from approval_kernel.db.base import Base
    import approval_kernel.models  # noqa: F401  (registers the tables on Base.metadata)

    Base.metadata.create_all(get_engine())

    if install_listeners:
        from approval_kernel.db.immutability import register_immutability_listeners

        register_immutability_listeners()


def drop_tables() -> None:
    """Drop every approval table (tests and local resets only)."""
    from approval_kernel.db.base import Base
    import approval_kernel.models  # noqa: F401

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


@atexit.register
def _dispose_at_exit() -> None:
    if _engine is not None:
        _engine.dispose()
