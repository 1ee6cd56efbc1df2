"""Typer CLI for Family RSVP."""

from __future__ import annotations

import json
from pathlib import Path

from sqlalchemy.exc import OperationalError
import typer
import uvicorn

from . import crud
from .config import (
    load_settings,
    settings,
    settings_as_dict,
    update_config_file,
)
from .database import get_session
from .errors import RSVPError
from .reminders import dispatch_reminders
from .rsvp import save_event
from .seed import seed_fake_data
from .storage import (
    ensure_root_token,
    fetch_root_token,
    init_db,
    rotate_root_token,
    upgrade_database,
)

app = typer.Typer(help="Family RSVP command-line interface")


def _fail(message: str) -> None:
    typer.secho(message, err=True, fg=typer.colors.RED)
    raise typer.Exit(code=1)


def _readonly_hint(exc: OperationalError, action: str) -> None:
    message = str(getattr(exc, "orig", exc)).lower()
    if "readonly" in message or "read-only" in message:
        _fail(
            f"Unable to {action} because the database is read-only. "
            f"Ensure the process can write to {settings.database_path}."
        )
    raise exc


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Show help when no subcommand is provided."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


@app.command("admin-token")
def admin_token() -> None:
    """Print the current root admin token."""
    init_db()
    typer.echo(fetch_root_token())


@app.command("rotate-admin-token")
def rotate_admin_token() -> None:
    """Rotate the root admin token."""
    try:
        init_db()
        token = rotate_root_token()
    except OperationalError as exc:
        _readonly_hint(exc, "rotate the root admin token")
    typer.echo(token)


@app.command("upgrade-db")
def upgrade_db(
    no_backup: bool = typer.Option(
        False,
        "--no-backup",
        help="Skip creating a .bak copy of the database before upgrading",
    ),
) -> None:
    """Upgrade the SQLite database schema if needed."""
    try:
        actions = upgrade_database(make_backup=not no_backup)
    except OperationalError as exc:
        _readonly_hint(exc, "upgrade")

    ensure_root_token()
    typer.echo("Database upgrade complete:")
    for action in actions:
        typer.echo(f"- {action}")


@app.command("runserver")
def runserver(
    host: str = typer.Option(settings.app_host, "--host", help="Host to bind"),
    port: int = typer.Option(settings.app_port, "--port", help="Port to bind"),
):
    """Start the API server."""
    init_db()
    config = uvicorn.Config(
        "familyrsvp.api:create_app",
        factory=True,
        host=host,
        port=port,
        reload=False,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )
    server = uvicorn.Server(config)
    typer.echo(f"Starting Family RSVP on {host}:{port}")
    server.run()


@app.command("add-family")
def add_family(
    name: str = typer.Argument(..., help="Display name of the family"),
    notes: str = typer.Option("", "--notes", help="Free-text notes"),
) -> None:
    """Create a family and print its id and access token."""
    init_db()
    try:
        with get_session() as session:
            family = crud.create_family(session, name=name, notes=notes)
            family_id, token = family.id, family.access_token
    except ValueError as exc:
        _fail(str(exc))
    typer.echo(f"Family {family_id}: token {token}")


@app.command("add-event")
def add_event(
    date: str = typer.Argument(..., help="Event date (YYYY-MM-DD)"),
    cap: int = typer.Option(..., "--cap", min=0, help="Maximum total attendance"),
    notes: str = typer.Option("", "--notes", help="Free-text notes"),
) -> None:
    """Create an event or update its cap."""
    init_db()
    try:
        with get_session() as session:
            event = save_event(session, date, cap, notes)
            summary = f"Event {event.date_key}: cap {event.cap}"
    except RSVPError as exc:
        _fail(f"{exc.kind}: {exc.message}")
    typer.echo(summary)


@app.command("remind")
def remind(
    days: int = typer.Option(
        settings.reminder_days,
        "--days",
        min=0,
        help="Look ahead this many days for unanswered events",
    ),
) -> None:
    """Run the reminder pass once."""
    init_db()
    stats = dispatch_reminders(within_days=days)
    typer.echo(
        f"Reminders: {stats['reminders']} due across {stats['events']} events "
        f"({stats['failures']} failed)."
    )


@app.command("seed-data")
def seed_data(
    families: int = typer.Option(
        settings.seed_families, "--families", min=0, help="Number of families to create"
    ),
    events: int = typer.Option(
        settings.seed_events, "--events", min=0, help="Number of upcoming events"
    ),
    cap: int = typer.Option(
        settings.seed_default_cap, "--cap", min=0, help="Cap for each seeded event"
    ),
):
    """Populate the database with fake families, events and responses."""
    stats = seed_fake_data(family_count=families, event_count=events, cap=cap)
    typer.echo(
        f"Seed complete: {stats['families']} families, {stats['events']} events, "
        f"{stats['responses']} responses created "
        f"({stats['events_skipped']} events kept, "
        f"{stats['responses_rejected']} responses over cap)."
    )


@app.command("config")
def configure(
    show: bool = typer.Option(
        False, "--show", help="Show the current effective configuration"
    ),
    reference_timezone: str | None = typer.Option(
        None, "--timezone", help="IANA zone that defines 'today' for listings"
    ),
    max_conflict_retries: int | None = typer.Option(
        None,
        "--max-conflict-retries",
        min=1,
        help="Attempts before a contended RSVP fails with Conflict",
    ),
    store_timeout_seconds: float | None = typer.Option(
        None, "--store-timeout", min=0.0, help="Seconds to wait on a locked database"
    ),
    reminder_days: int | None = typer.Option(
        None, "--reminder-days", min=0, help="Days ahead to look for unanswered events"
    ),
    reminder_hour: int | None = typer.Option(
        None, "--reminder-hour", min=0, max=23, help="Hour of the daily reminder run"
    ),
    enable_scheduler: bool | None = typer.Option(
        None,
        "--enable-scheduler/--disable-scheduler",
        help="Toggle the background reminder scheduler",
    ),
    host: str | None = typer.Option(None, "--host", help="Default host for runserver"),
    port: int | None = typer.Option(None, "--port", help="Default port for runserver"),
    config_path: Path | None = typer.Option(
        None, "--config-path", help="Path to familyrsvp.toml (default: ./familyrsvp.toml)"
    ),
):
    """View or update the persistent configuration file."""

    updates = {
        "reference_timezone": reference_timezone,
        "max_conflict_retries": max_conflict_retries,
        "store_timeout_seconds": store_timeout_seconds,
        "reminder_days": reminder_days,
        "reminder_hour": reminder_hour,
        "enable_scheduler": enable_scheduler,
        "app_host": host,
        "app_port": port,
    }
    clean_updates = {k: v for k, v in updates.items() if v is not None}

    target_path = config_path or settings.config_path
    if clean_updates:
        settings_ref = update_config_file(clean_updates, path=target_path)
        typer.echo(f"Updated configuration in {target_path}")
    else:
        settings_ref = load_settings(target_path)
    if show or not clean_updates:
        effective = settings_as_dict(settings_ref)
        effective["config_path"] = str(target_path)
        typer.echo(json.dumps(effective, indent=2))


if __name__ == "__main__":
    app()
