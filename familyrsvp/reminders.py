"""Find families that have not answered for events coming up soon.

Delivery is left to the notifier passed to :func:`dispatch_reminders`; the
default one only logs.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from . import crud
from .config import settings
from .database import get_session
from .models import EventInstance, Family
from .schedule import events_within

logger = logging.getLogger("uvicorn.error")

Notifier = Callable[[EventInstance, Family], None]


@dataclass(frozen=True)
class ReminderBatch:
    event: EventInstance
    families: list[Family]


def families_missing_response(
    session: Session, within_days: int, now: datetime | None = None
) -> list[ReminderBatch]:
    """Events within ``within_days`` of today with the families yet to answer."""
    families = crud.get_families(session)
    batches: list[ReminderBatch] = []
    for event in events_within(session, within_days, now):
        answered = {
            response.family_id
            for response in crud.responses_for_event(session, event.date_key)
        }
        missing = [family for family in families if family.id not in answered]
        if missing:
            batches.append(ReminderBatch(event=event, families=missing))
    return batches


def log_notifier(event: EventInstance, family: Family) -> None:
    logger.info(
        "Reminder due: family %s (%s) has not answered for %s",
        family.id,
        family.name,
        event.date_key,
    )


def dispatch_reminders(
    notifier: Notifier | None = None,
    *,
    within_days: int | None = None,
    now: datetime | None = None,
) -> dict[str, int]:
    """Call ``notifier`` once per unanswered (event, family) pair."""
    notify = notifier or log_notifier
    days = settings.reminder_days if within_days is None else within_days
    stats = {"events": 0, "reminders": 0, "failures": 0}
    with get_session() as session:
        for batch in families_missing_response(session, days, now):
            stats["events"] += 1
            for family in batch.families:
                try:
                    notify(batch.event, family)
                except Exception:
                    stats["failures"] += 1
                    logger.exception(
                        "Reminder notifier failed for family %s on %s",
                        family.id,
                        batch.event.date_key,
                    )
                    continue
                stats["reminders"] += 1
    logger.info("Reminder run complete: %s", stats)
    return stats
