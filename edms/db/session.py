"""
EDMS Database Session Management.

Provides the single entry point for DB initialisation plus a context
manager for units of work. Every multi-step write runs inside one
``session_scope()``; it commits on success and rolls back on any exception.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Callable, Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from edms.db.base import Base

SessionFactory = Callable[[], Session]

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def create_db_engine(
    db_url: str,
    pool_size: int = 10,
    max_overflow: int = 20,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    pool_pre_ping: bool = True,
) -> Engine:
    """
    Build an engine for ``db_url``.

    SQLite gets foreign keys switched on (needed for ON DELETE SET NULL on
    audit rows); in-memory SQLite shares one connection across threads.
    """
    if db_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if db_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(db_url, **kwargs)

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return create_engine(
        db_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
        pool_pre_ping=pool_pre_ping,
    )


def init_db(db_url: str, create_tables: bool = False, **pool_options) -> sessionmaker:
    """
    Initialise the module-level engine and session factory.

    Args:
        db_url:        SQLAlchemy URL (postgresql://..., sqlite:///edms.db).
        create_tables: Run Base.metadata.create_all(). Schema migrations are
                       out of scope, so this is how fresh databases are built.

    Returns:
        A ``sessionmaker`` bound to the engine.
    """
    global _engine, _session_factory

    # Register the mapped tables on Base.metadata.
    import edms.db.models  # noqa: F401

    _engine = create_db_engine(db_url, **pool_options)
    if create_tables:
        Base.metadata.create_all(_engine)
    _session_factory = sessionmaker(bind=_engine, expire_on_commit=False)
    return _session_factory


def get_session_factory() -> sessionmaker:
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _session_factory


@contextmanager
def session_scope(factory: Optional[SessionFactory] = None) -> Generator[Session, None, None]:
    """
    Context manager for a unit of work with auto-commit/rollback.

    Usage:
        with session_scope(factory) as session:
            session.add(doc)
    """
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def close_db() -> None:
    """Dispose the engine. Used during shutdown and between tests."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None
