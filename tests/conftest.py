"""Shared pytest fixtures for Family RSVP."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest
from sqlalchemy.orm import scoped_session
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from familyrsvp import api, crud, database, storage
from familyrsvp.models import Base


@pytest.fixture(scope="session", autouse=True)
def configure_in_memory_db():
    """Reuse a single in-memory SQLite database for fast, isolated tests."""

    engine = database.build_engine(
        "sqlite+pysqlite:///:memory:", timeout=5, poolclass=StaticPool
    )
    session_factory = scoped_session(database.session_factory(engine))
    database.engine = engine
    database.SessionLocal = session_factory
    storage.engine = engine
    storage.get_session = database.get_session
    api.SessionLocal = session_factory
    Base.metadata.create_all(bind=engine)
    yield
    session_factory.remove()


@pytest.fixture(autouse=True)
def clean_database():
    """Reset all tables between tests to guarantee isolation."""

    database.SessionLocal.remove()
    Base.metadata.drop_all(bind=database.engine)
    Base.metadata.create_all(bind=database.engine)
    yield
    database.SessionLocal.remove()


@pytest.fixture()
def session():
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def make_family(session):
    def _make(name: str = "Smith", token: str | None = None):
        family = crud.create_family(session, name=name, access_token=token)
        session.commit()
        return family

    return _make


@pytest.fixture()
def make_event(session):
    def _make(date_key: str = "2099-06-01", cap: int = 5, notes: str = ""):
        event = crud.put_event(session, date_key=date_key, cap=cap, notes=notes)
        session.commit()
        return event

    return _make


@pytest.fixture()
def file_session_factory(tmp_path):
    """Sessions on a file-backed SQLite database shared across threads."""

    engine = database.build_engine(f"sqlite:///{tmp_path / 'race.sqlite'}", timeout=10)
    Base.metadata.create_all(bind=engine)
    yield database.session_factory(engine)
    engine.dispose()
