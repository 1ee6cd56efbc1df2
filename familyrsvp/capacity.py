"""Attendance aggregation over an event's responses."""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import crud
from .errors import StoreFailure

logger = logging.getLogger("uvicorn.error")


def other_families_total(session: Session, date_key: str, family_id: int) -> int:
    """Sum attendance of every response for the event except ``family_id``'s.

    The submitting family's own response is left out because a new
    submission replaces it rather than adding to it.
    """
    try:
        return crud.attending_total(session, date_key, exclude_family_id=family_id)
    except SQLAlchemyError as exc:
        logger.error("Attendance scan failed for event %s: %s", date_key, exc)
        raise StoreFailure(f"Could not total responses for event {date_key}") from exc


def remaining_seats(session: Session, date_key: str, cap: int) -> int:
    try:
        taken = crud.attending_total(session, date_key)
    except SQLAlchemyError as exc:
        raise StoreFailure(f"Could not total responses for event {date_key}") from exc
    return max(cap - taken, 0)
