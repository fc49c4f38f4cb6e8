"""
SQLAlchemy engine and session factory for sysinv.
The collector, the store and the API all receive the engine / session factory
built here; nothing in the package holds a module-level engine.

DATABASE_URL defaults to a local SQLite file (see shared/config.py).
Point it at PostgreSQL for deployments.
"""

from typing import Any

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


def make_engine(database_url: str, pool_size: int = 10, max_overflow: int = 20) -> Engine:
    """
    Build the engine. SQLite URLs skip the pool sizing that only QueuePool accepts.

    In-memory SQLite shares one connection across every session, so a reader
    running during reconcile() sees its uncommitted writes. Use it for tests
    only; the service needs a file or PostgreSQL URL for reader isolation.
    """
    kwargs: dict[str, Any] = {"pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        # In-memory databases live and die with their connection
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite+pysqlite://"):
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_size"] = pool_size
        kwargs["max_overflow"] = max_overflow
    return create_engine(database_url, **kwargs)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def create_all_tables(engine: Engine) -> None:
    """Create all ORM tables. Called at service startup."""
    from sysinv.services.shared import models  # noqa: F401 - ensures models are registered
    Base.metadata.create_all(bind=engine)


def ping(engine: Engine) -> None:
    """Round-trip a trivial statement. Raises the driver error if the DB is unreachable."""
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))


def pool_stats(engine: Engine) -> dict[str, int | None]:
    # SQLite's StaticPool / SingletonThreadPool do not expose counters
    pool = engine.pool
    checked_out_fn = getattr(pool, "checkedout", None)
    checked_in_fn  = getattr(pool, "checkedin", None)
    overflow_fn    = getattr(pool, "overflow", None)
    size_fn        = getattr(pool, "size", None)
    return {
        "size":        int(size_fn()) if callable(size_fn) else None,
        "checked_out": int(checked_out_fn()) if callable(checked_out_fn) else None,
        "checked_in":  int(checked_in_fn()) if callable(checked_in_fn) else None,
        "overflow":    int(overflow_fn()) if callable(overflow_fn) else None,
    }
