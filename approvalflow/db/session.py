"""Engine and session factory.

PostgreSQL is the production store. SQLite is accepted for development
and tests; its driver needs explicit BEGIN handling for SAVEPOINTs to
work, which the lifecycle manager relies on for per-operation rollback.
"""

from functools import lru_cache
from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from approvalflow.core.config import get_settings


def create_db_engine(url: Optional[str] = None, *, echo: Optional[bool] = None) -> Engine:
    """Create an engine for the configured (or given) database URL."""
    settings = get_settings()
    url = url or settings.database_url
    echo = settings.database_echo if echo is None else echo

    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url in ("sqlite://", "sqlite+pysqlite://"):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, echo=echo, **kwargs)
        _enable_sqlite_savepoints(engine)
        return engine

    return create_engine(url, echo=echo, pool_pre_ping=True)


def _enable_sqlite_savepoints(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


SessionLocal = sessionmaker(autoflush=False)


@lru_cache
def get_engine() -> Engine:
    """Process-wide engine for the configured database."""
    return create_db_engine()


def new_session() -> Session:
    """Open a session bound to the process-wide engine."""
    return SessionLocal(bind=get_engine())
