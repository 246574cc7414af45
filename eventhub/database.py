"""Database helpers for EventHub."""

from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import scoped_session, sessionmaker

from . import config

DATABASE_URL = config.settings.database_url


def build_engine(url: str, **kwargs) -> Engine:
    """Create an engine, enabling foreign keys on SQLite connections."""
    connect_args = kwargs.pop("connect_args", {})
    if url.startswith("sqlite"):
        connect_args.setdefault("check_same_thread", False)
    else:
        kwargs.setdefault("pool_pre_ping", True)
    new_engine = create_engine(url, connect_args=connect_args, future=True, **kwargs)
    if new_engine.dialect.name == "sqlite":
        event.listen(new_engine, "connect", _enable_sqlite_foreign_keys)
    if new_engine.dialect.driver == "pysqlite":
        # pysqlite issues its own BEGIN lazily, which breaks SAVEPOINT; take over.
        event.listen(new_engine, "connect", _disable_pysqlite_transactions)
        event.listen(new_engine, "begin", _emit_begin)
    return new_engine


def _enable_sqlite_foreign_keys(dbapi_connection, _record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _disable_pysqlite_transactions(dbapi_connection, _record) -> None:
    dbapi_connection.isolation_level = None


def _emit_begin(connection) -> None:
    connection.exec_driver_sql("BEGIN")


engine = build_engine(DATABASE_URL)
SessionLocal = scoped_session(
    sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        future=True,
        expire_on_commit=False,
    )
)


@contextmanager
def get_session():
    """Context manager returning a SQLAlchemy session."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def dispose_engine() -> None:
    """Release pooled connections; called when the app or CLI shuts down."""
    SessionLocal.remove()
    engine.dispose()
