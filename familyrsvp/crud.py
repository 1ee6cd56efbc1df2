"""CRUD helpers for families, events, and responses."""

from __future__ import annotations

import secrets
from collections.abc import Iterable
from datetime import date, datetime
from typing import Sequence

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from .models import EventInstance, Family, Person, Response
from .utils import utcnow


def _now() -> datetime:
    return utcnow()


def new_access_token() -> str:
    return secrets.token_urlsafe(24)


# Families


def get_family(session: Session, family_id: int) -> Family | None:
    return session.get(Family, family_id)


def get_families(session: Session) -> Sequence[Family]:
    stmt = select(Family).order_by(Family.name.asc(), Family.id.asc())
    return session.scalars(stmt).all()


def create_family(
    session: Session,
    *,
    name: str,
    notes: str = "",
    access_token: str | None = None,
) -> Family:
    """Create and persist a new family with a fresh access token."""
    name = (name or "").strip()
    if not name:
        raise ValueError("Family name is required")
    token = access_token or new_access_token()
    family = Family(
        name=name,
        access_token=token,
        notes=notes or "",
        created_at=_now(),
        last_modified=_now(),
    )
    session.add(family)
    session.flush()
    return family


def rotate_family_token(session: Session, family: Family) -> str:
    family.access_token = new_access_token()
    family.last_modified = _now()
    session.add(family)
    session.flush()
    return family.access_token


def add_person(
    session: Session,
    family: Family,
    *,
    name: str,
    email: str | None = None,
    is_child: bool = False,
    birth_date: date | None = None,
    diet_notes: str = "",
    notes: str = "",
) -> Person:
    name = (name or "").strip()
    if not name:
        raise ValueError("Person name is required")
    person = Person(
        family=family,
        name=name,
        email=(email or "").strip() or None,
        is_child=bool(is_child),
        birth_date=birth_date,
        diet_notes=(diet_notes or "").strip(),
        notes=notes or "",
    )
    session.add(person)
    family.last_modified = _now()
    session.flush()
    return person


# Events


def get_event(session: Session, date_key: str) -> EventInstance | None:
    return session.get(EventInstance, date_key)


def events_from(session: Session, first_date_key: str) -> Iterable[EventInstance]:
    """Events on or after ``first_date_key`` in ascending date order."""
    stmt = (
        select(EventInstance)
        .where(EventInstance.date_key >= first_date_key)
        .order_by(EventInstance.date_key.asc())
    )
    return session.scalars(stmt)


def events_between(
    session: Session, first_date_key: str, last_date_key: str
) -> Sequence[EventInstance]:
    stmt = (
        select(EventInstance)
        .where(
            EventInstance.date_key >= first_date_key,
            EventInstance.date_key <= last_date_key,
        )
        .order_by(EventInstance.date_key.asc())
    )
    return session.scalars(stmt).all()


def put_event(
    session: Session,
    *,
    date_key: str,
    cap: int,
    notes: str = "",
) -> EventInstance:
    """Create the event for ``date_key`` or update its cap and notes."""
    if cap < 0:
        raise ValueError("Cap must be a non-negative integer")
    event = get_event(session, date_key)
    if event is None:
        event = EventInstance(
            date_key=date_key,
            cap=cap,
            notes=notes or "",
            version=0,
            created_at=_now(),
            last_modified=_now(),
        )
    else:
        event.cap = cap
        event.notes = notes or ""
        event.last_modified = _now()
    session.add(event)
    session.flush()
    return event


def claim_event_version(session: Session, date_key: str, expected_version: int) -> bool:
    """Advance the event's partition version if it still equals ``expected_version``.

    Returns ``False`` when another writer advanced it first.
    """
    stmt = (
        update(EventInstance)
        .where(
            EventInstance.date_key == date_key,
            EventInstance.version == expected_version,
        )
        .values(version=EventInstance.version + 1)
        .execution_options(synchronize_session=False)
    )
    result = session.execute(stmt)
    return result.rowcount == 1


# Responses


def get_response(session: Session, date_key: str, family_id: int) -> Response | None:
    return session.get(Response, (date_key, family_id))


def responses_for_event(session: Session, date_key: str) -> Sequence[Response]:
    """Every response in the event's partition."""
    stmt = (
        select(Response)
        .where(Response.event_date == date_key)
        .order_by(Response.family_id.asc())
    )
    return session.scalars(stmt).all()


def responses_for_family(
    session: Session, family_id: int, date_keys: Iterable[str]
) -> dict[str, Response]:
    keys = list(date_keys)
    if not keys:
        return {}
    stmt = select(Response).where(
        Response.family_id == family_id, Response.event_date.in_(keys)
    )
    return {response.event_date: response for response in session.scalars(stmt)}


def attending_total(
    session: Session, date_key: str, *, exclude_family_id: int | None = None
) -> int:
    stmt = select(func.coalesce(func.sum(Response.attending), 0)).where(
        Response.event_date == date_key
    )
    if exclude_family_id is not None:
        stmt = stmt.where(Response.family_id != exclude_family_id)
    return int(session.scalar(stmt) or 0)


def put_response(
    session: Session,
    *,
    date_key: str,
    family_id: int,
    attending: int,
    note: str,
    existing: Response | None = None,
) -> Response:
    """Replace (or create) the family's response for the event."""
    response = existing
    if response is None:
        response = Response(
            event_date=date_key,
            family_id=family_id,
            created_at=_now(),
        )
    response.attending = attending
    response.note = note or ""
    response.last_modified = _now()
    session.add(response)
    session.flush()
    return response
