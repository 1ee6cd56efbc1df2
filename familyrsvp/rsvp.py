"""RSVP submission with per-event capacity enforcement.

Writes to one event's responses are serialized through the event's
``version`` column: each attempt reads the event, the family's current
response and (when the family asks for more seats) the other families'
total, then commits the response together with a conditional version bump.
If another submission for the same event committed in between, the bump
matches no row and the attempt is replayed against fresh data.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from . import crud
from .capacity import other_families_total
from .config import settings
from .errors import (
    BadRequest,
    Cancelled,
    CapExceeded,
    Conflict,
    NotFound,
    StoreFailure,
)
from .models import EventInstance, Family, Response
from .resolvers import load_family, resolve_event, resolve_family
from .schedule import upcoming_events
from .utils import is_date_key, parse_optional_int

logger = logging.getLogger("uvicorn.error")

MAX_NOTE_LENGTH = 2000

AbortCheck = Callable[[], bool]


@dataclass(frozen=True)
class UpcomingEntry:
    event: EventInstance
    response: Response | None


def _validate_submission(
    date_key: str | None, attending: str | int | None, note: str | None
) -> tuple[str, int, str]:
    count = parse_optional_int(attending)
    if count is None:
        raise BadRequest("attending must be an integer", field="attending")
    if count < 0:
        raise BadRequest("attending must be zero or more", field="attending")
    key = (date_key or "").strip()
    if not is_date_key(key):
        raise BadRequest(
            f"date must be a calendar date in YYYY-MM-DD form, got {key!r}",
            field="date",
        )
    text = note or ""
    if len(text) > MAX_NOTE_LENGTH:
        raise BadRequest(
            f"note must be at most {MAX_NOTE_LENGTH} characters", field="note"
        )
    return key, count, text


def _is_lock_error(exc: OperationalError) -> bool:
    raw = str(getattr(exc, "orig", exc)).lower()
    return "locked" in raw or "busy" in raw


def _write_response(
    session: Session,
    family: Family,
    date_key: str,
    attending: int,
    note: str,
    *,
    max_attempts: int | None = None,
    should_abort: AbortCheck | None = None,
) -> Response:
    family_id = family.id
    attempts = max_attempts or settings.max_conflict_retries
    for attempt in range(1, attempts + 1):
        session.expire_all()
        event = resolve_event(session, date_key)
        cap = event.cap
        expected_version = event.version
        try:
            existing = crud.get_response(session, date_key, family_id)
        except SQLAlchemyError as exc:
            raise StoreFailure(
                f"Could not load response of family {family_id} for {date_key}"
            ) from exc
        previous = existing.attending if existing is not None else 0

        if attending > previous:
            others = other_families_total(session, date_key, family_id)
            if others + attending > cap:
                logger.info(
                    "Rejected RSVP for family %s on %s: %s requested, %s of %s taken",
                    family_id,
                    date_key,
                    attending,
                    others,
                    cap,
                )
                raise CapExceeded(
                    f"Event {date_key} has room for {max(cap - others, 0)} more; "
                    f"{attending} requested"
                )

        # Last point at which giving up leaves the store untouched.
        if should_abort is not None and should_abort():
            session.rollback()
            logger.info(
                "Abandoned RSVP for family %s on %s: request cancelled",
                family_id,
                date_key,
            )
            raise Cancelled(f"RSVP for {date_key} was cancelled before saving")

        try:
            if not crud.claim_event_version(session, date_key, expected_version):
                session.rollback()
                logger.info(
                    "RSVP conflict for family %s on %s (attempt %s/%s)",
                    family_id,
                    date_key,
                    attempt,
                    attempts,
                )
                continue
            response = crud.put_response(
                session,
                date_key=date_key,
                family_id=family_id,
                attending=attending,
                note=note,
                existing=existing,
            )
            session.commit()
        except OperationalError as exc:
            session.rollback()
            if _is_lock_error(exc):
                logger.info(
                    "Store busy while saving RSVP for family %s on %s (attempt %s/%s)",
                    family_id,
                    date_key,
                    attempt,
                    attempts,
                )
                continue
            logger.error("Failed to save RSVP for family %s on %s: %s", family_id, date_key, exc)
            raise StoreFailure(
                f"Could not save response of family {family_id} for {date_key}"
            ) from exc
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error("Failed to save RSVP for family %s on %s: %s", family_id, date_key, exc)
            raise StoreFailure(
                f"Could not save response of family {family_id} for {date_key}"
            ) from exc

        logger.info(
            "Saved RSVP for family %s on %s: %s attending (was %s)",
            family_id,
            date_key,
            attending,
            previous if existing is not None else "no answer",
        )
        return response

    logger.warning(
        "Giving up on RSVP for family %s on %s after %s conflicting attempts",
        family_id,
        date_key,
        attempts,
    )
    raise Conflict(
        f"Event {date_key} kept changing while saving; please resubmit"
    )


def submit_rsvp(
    session: Session,
    family_id: int,
    token: str,
    date_key: str | None,
    attending: str | int | None,
    note: str | None = "",
    *,
    max_attempts: int | None = None,
    should_abort: AbortCheck | None = None,
) -> Response:
    """Record a family's attendance for an event, enforcing the event cap.

    Raises :class:`Unauthorized` for an unknown family or wrong token,
    :class:`BadRequest` for malformed input, :class:`NotFound` for an unknown
    event, :class:`CapExceeded` when the cap would be exceeded,
    :class:`Conflict` when concurrent writers keep winning, and
    :class:`StoreFailure` when storage errors out.

    ``should_abort`` is polled before each write is issued; when it returns
    true the attempt stops with :class:`Cancelled` and nothing is saved.
    """
    family = resolve_family(session, family_id, token)
    key, count, text = _validate_submission(date_key, attending, note)
    return _write_response(
        session,
        family,
        key,
        count,
        text,
        max_attempts=max_attempts,
        should_abort=should_abort,
    )


def submit_rsvp_as_admin(
    session: Session,
    family_id: int,
    date_key: str | None,
    attending: str | int | None,
    note: str | None = "",
    *,
    max_attempts: int | None = None,
    should_abort: AbortCheck | None = None,
) -> Response:
    """Write a response on a family's behalf.

    The caller has already passed the administrator check. The cap is
    enforced exactly as for family submissions.
    """
    family = load_family(session, family_id)
    if family is None:
        raise NotFound(f"Family {family_id} not found")
    key, count, text = _validate_submission(date_key, attending, note)
    logger.info("Admin override RSVP for family %s on %s", family_id, key)
    return _write_response(
        session,
        family,
        key,
        count,
        text,
        max_attempts=max_attempts,
        should_abort=should_abort,
    )


def save_event(
    session: Session,
    date_key: str | None,
    cap: str | int | None,
    notes: str | None = "",
    *,
    max_attempts: int | None = None,
) -> EventInstance:
    """Create an event or change its cap and notes.

    A cap below the attendance already recorded is refused. Updates claim
    the event version like response writes do, so a submission that read
    the old cap cannot commit against it.
    """
    key = (date_key or "").strip()
    if not is_date_key(key):
        raise BadRequest(
            f"date must be a calendar date in YYYY-MM-DD form, got {key!r}",
            field="date",
        )
    new_cap = parse_optional_int(cap)
    if new_cap is None or new_cap < 0:
        raise BadRequest("cap must be a non-negative integer", field="cap")

    attempts = max_attempts or settings.max_conflict_retries
    for _ in range(attempts):
        session.expire_all()
        try:
            event = crud.get_event(session, key)
            if event is None:
                event = crud.put_event(session, date_key=key, cap=new_cap, notes=notes or "")
                session.commit()
                logger.info("Created event %s with cap %s", key, new_cap)
                return event
            taken = crud.attending_total(session, key)
            if new_cap < taken:
                raise BadRequest(
                    f"cap {new_cap} is below the {taken} already attending {key}",
                    field="cap",
                )
            if not crud.claim_event_version(session, key, event.version):
                session.rollback()
                continue
            event = crud.put_event(session, date_key=key, cap=new_cap, notes=notes or "")
            session.commit()
        except IntegrityError:
            # Created concurrently; retry as an update.
            session.rollback()
            continue
        except OperationalError as exc:
            session.rollback()
            if _is_lock_error(exc):
                continue
            raise StoreFailure(f"Could not save event {key}") from exc
        except SQLAlchemyError as exc:
            session.rollback()
            raise StoreFailure(f"Could not save event {key}") from exc
        logger.info("Updated event %s: cap %s", key, new_cap)
        return event
    raise Conflict(f"Event {key} kept changing while saving; please resubmit")


def list_upcoming_responses(
    session: Session,
    family_id: int,
    token: str,
    *,
    now: datetime | None = None,
) -> tuple[Family, list[UpcomingEntry]]:
    """Pair each upcoming event with the family's response, if any."""
    family = resolve_family(session, family_id, token)
    try:
        events = list(upcoming_events(session, now))
        responses = crud.responses_for_family(
            session, family.id, (event.date_key for event in events)
        )
    except SQLAlchemyError as exc:
        logger.error("Failed to list upcoming events for family %s: %s", family_id, exc)
        raise StoreFailure("Could not list upcoming events") from exc
    return family, [
        UpcomingEntry(event=event, response=responses.get(event.date_key))
        for event in events
    ]
