"""Engine and session setup for the SQLite store."""

from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import scoped_session, sessionmaker

from .config import settings


def _enable_foreign_keys(dbapi_connection, _record) -> None:
    # SQLite ignores REFERENCES clauses unless asked per connection.
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(database_url: str, *, timeout: float, **kwargs) -> Engine:
    """Create a SQLite engine shared across request threads.

    ``timeout`` is sqlite3's busy timeout: how long a statement waits on
    another connection's write lock before failing with "database is locked".
    """
    built = create_engine(
        database_url,
        connect_args={"check_same_thread": False, "timeout": timeout},
        future=True,
        **kwargs,
    )
    event.listen(built, "connect", _enable_foreign_keys)
    return built


def session_factory(bind: Engine) -> sessionmaker:
    # Objects stay readable after commit; serializers run after the
    # coordinator has committed.
    return sessionmaker(
        bind=bind,
        autoflush=False,
        autocommit=False,
        future=True,
        expire_on_commit=False,
    )


DATABASE_URL = f"sqlite:///{settings.database_path}"
engine = build_engine(DATABASE_URL, timeout=settings.store_timeout_seconds)
SessionLocal = scoped_session(session_factory(engine))


@contextmanager
def get_session():
    """Yield a session that commits on success and rolls back on error."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
