"""Schema migrations, backups and the root admin token."""

from __future__ import annotations

import hmac
import logging
import secrets
import sqlite3
from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy import inspect

from .config import settings
from .database import engine, get_session
from .models import Meta
from .utils import utcnow

logger = logging.getLogger("uvicorn.error")

# Last revision whose schema predates people.diet_notes.
BASELINE_REVISION = "0001_initial"


def init_db() -> None:
    upgrade_database(make_backup=False)
    ensure_root_token()


def _alembic_config() -> Config:
    script_location = Path(__file__).resolve().parent / "alembic"
    config = Config()
    config.set_main_option("script_location", str(script_location))
    config.set_main_option("sqlalchemy.url", str(engine.url))
    return config


def schema_revisions(config: Config | None = None) -> tuple[str | None, str]:
    """Return ``(current, head)``; ``current`` is None for untracked databases."""
    config = config or _alembic_config()
    head = ScriptDirectory.from_config(config).get_current_head()
    with engine.connect() as connection:
        current = MigrationContext.configure(connection).get_current_revision()
    return current, head


def backup_database(db_path: Path) -> Path:
    """Snapshot the live database next to it using SQLite's online backup API."""
    backup_path = db_path.with_suffix(db_path.suffix + ".bak")
    raw = engine.raw_connection()
    try:
        target = sqlite3.connect(backup_path)
        try:
            raw.driver_connection.backup(target)
        finally:
            target.close()
    finally:
        raw.close()
    return backup_path


def _untracked_baseline() -> str:
    """Pick the revision an untracked schema already matches."""
    inspector = inspect(engine)
    if not inspector.has_table("people"):
        return "head"
    columns = {column["name"] for column in inspector.get_columns("people")}
    return "head" if "diet_notes" in columns else BASELINE_REVISION


def upgrade_database(*, make_backup: bool = True) -> list[str]:
    """Bring the schema to the latest revision.

    Returns a list of applied actions.
    """
    actions: list[str] = []
    db_path = Path(settings.database_path)
    existed = db_path.exists()
    config = _alembic_config()
    current, head = schema_revisions(config)
    if current == head:
        actions.append(f"Database already at revision {head}")
        return actions

    if make_backup and existed:
        actions.append(f"Backup created at {backup_database(db_path)}")

    if current is None and not inspect(engine).has_table("events"):
        command.upgrade(config, "head")
        actions.append("Ran Alembic upgrade to head (fresh database)")
    elif current is None:
        baseline = _untracked_baseline()
        command.stamp(config, baseline)
        if baseline == "head":
            actions.append("Stamped existing database to Alembic head")
        else:
            actions.append(f"Stamped existing database at {baseline}")
            command.upgrade(config, "head")
            actions.append("Applied Alembic migrations to head")
    else:
        command.upgrade(config, "head")
        actions.append(f"Applied Alembic migrations from {current} to head")

    logger.info("Schema upgrade: %s", "; ".join(actions))
    return actions


def _store_root_token(session, token: str) -> str:
    session.merge(Meta(key=settings.root_token_key, value=token, updated_at=utcnow()))
    return token


def ensure_root_token() -> str:
    with get_session() as session:
        existing = session.get(Meta, settings.root_token_key)
        if existing:
            return existing.value
        return _store_root_token(session, secrets.token_urlsafe(32))


def rotate_root_token() -> str:
    with get_session() as session:
        token = _store_root_token(session, secrets.token_urlsafe(32))
    logger.info("Root admin token rotated")
    return token


def fetch_root_token() -> str:
    with get_session() as session:
        meta = session.get(Meta, settings.root_token_key)
        if meta is not None:
            return meta.value
    return ensure_root_token()


def is_root_token(candidate: str | None) -> bool:
    """Constant-time comparison against the stored root admin token."""
    if not candidate:
        return False
    return hmac.compare_digest(candidate, fetch_root_token())
