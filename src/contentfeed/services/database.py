"""Engine and session helpers for the PostgreSQL store (SQLite for local runs and tests)."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Callable, Iterator, TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from contentfeed.models import db

SessionFactory = sessionmaker[Session]
SessionT = TypeVar("SessionT", bound=Session)


def build_engine(database_url: str) -> Engine:
    """Create an SQLAlchemy engine with sensible defaults."""

    if database_url.startswith("sqlite"):
        engine = create_engine(database_url, connect_args={"check_same_thread": False})
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        return engine
    return create_engine(database_url, pool_pre_ping=True, pool_size=5, max_overflow=5)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    # SQLite ignores REFERENCES clauses unless asked per connection
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_session_factory(engine: Engine) -> SessionFactory:
    """Create a configured session factory bound to the engine."""

    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@contextmanager
def session_scope(factory: Callable[[], SessionT]) -> Iterator[SessionT]:
    """Provide a transactional scope for a series of operations."""

    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_database(engine: Engine) -> None:
    """Create required tables if they do not already exist."""

    db.Base.metadata.create_all(engine)
