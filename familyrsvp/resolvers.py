"""Family and event lookups that fail with typed errors."""

from __future__ import annotations

import hmac
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import crud
from .errors import UNAUTHORIZED_MESSAGE, NotFound, StoreFailure, Unauthorized
from .models import EventInstance, Family
from .utils import MAX_SQLITE_INT

logger = logging.getLogger("uvicorn.error")


def load_family(session: Session, family_id: int) -> Family | None:
    if not 0 < family_id <= MAX_SQLITE_INT:
        return None
    try:
        return crud.get_family(session, family_id)
    except SQLAlchemyError as exc:
        logger.error("Failed to load family %s: %s", family_id, exc)
        raise StoreFailure(f"Could not load family {family_id}") from exc


def resolve_family(session: Session, family_id: int, token: str) -> Family:
    """Return the family when ``token`` matches its access token.

    A missing family and a wrong token raise the same :class:`Unauthorized`.
    """
    family = load_family(session, family_id)
    if (
        family is None
        or not token
        or not hmac.compare_digest(family.access_token, token)
    ):
        logger.info("Rejected credentials for family %s", family_id)
        raise Unauthorized(UNAUTHORIZED_MESSAGE)
    return family


def resolve_event(session: Session, date_key: str) -> EventInstance:
    try:
        event = crud.get_event(session, date_key)
    except SQLAlchemyError as exc:
        logger.error("Failed to load event %s: %s", date_key, exc)
        raise StoreFailure(f"Could not load event {date_key}") from exc
    if event is None:
        raise NotFound(f"Event {date_key} not found")
    return event
