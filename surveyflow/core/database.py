"""Database connection management for SQLModel ORM."""

from pathlib import Path
from typing import Any, Generator

from sqlalchemy import event
from sqlalchemy.engine import Engine, make_url
from sqlmodel import Session, SQLModel, create_engine

from .config import get_settings

_DATABASE_URL: str | None = None
_engine: Engine | None = None


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys = ON")
    cursor.close()


def create_db_engine(url: str, **kwargs: Any) -> Engine:
    """Create an engine for ``url``.

    SQLite engines get ``PRAGMA foreign_keys = ON`` on every connection so
    that ``ON DELETE`` clauses are honoured, and a file database gets its
    parent directory created.
    """
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite":
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        if parsed.database and parsed.database != ":memory:":
            Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(url, echo=False, **kwargs)
    if parsed.get_backend_name() == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def get_database_url() -> str:
    """Get the configured database URL."""
    if _DATABASE_URL is None:
        return get_settings().database_url
    return _DATABASE_URL


def set_database_url(url: str) -> None:
    """Set a custom database URL (useful for testing)."""
    global _DATABASE_URL, _engine
    _DATABASE_URL = url
    _engine = None  # Reset engine when URL changes


def get_engine() -> Engine:
    """Get SQLAlchemy engine for SQLModel operations."""
    global _engine
    if _engine is None:
        _engine = create_db_engine(get_database_url())
    return _engine


def get_session() -> Generator[Session, None, None]:
    """Yield a SQLModel session for dependency injection."""
    with Session(get_engine()) as session:
        yield session


def init_db(engine: Engine | None = None) -> None:
    """Create all tables. Safe to call multiple times."""
    from surveyflow.surveys import models  # noqa: F401  (registers tables)

    SQLModel.metadata.create_all(engine or get_engine())
