"""Upcoming-event queries anchored to the deployment's reference time zone."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, date, datetime, timedelta

from sqlalchemy.orm import Session

from . import crud
from .config import settings
from .models import EventInstance


def reference_today(now: datetime | None = None) -> date:
    """Return today's date in the configured reference time zone.

    Naive ``now`` values are treated as UTC.
    """
    current = now or datetime.now(UTC)
    if current.tzinfo is None:
        current = current.replace(tzinfo=UTC)
    return current.astimezone(settings.zone).date()


def upcoming_events(
    session: Session, now: datetime | None = None
) -> Iterator[EventInstance]:
    """Yield events dated today or later, earliest first."""
    today = reference_today(now).isoformat()
    yield from crud.events_from(session, today)


def events_within(
    session: Session, days: int, now: datetime | None = None
) -> list[EventInstance]:
    today = reference_today(now)
    span = min(max(days, 0), (date.max - today).days)
    last = today + timedelta(days=span)
    return list(crud.events_between(session, today.isoformat(), last.isoformat()))
