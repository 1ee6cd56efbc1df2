"""Development helpers for populating fake families, events and responses.

Events and responses go through :mod:`familyrsvp.rsvp`, so seeding never
leaves an event over its cap, even when run again against existing data.
"""

from __future__ import annotations

import logging
import random
from datetime import timedelta

from faker import Faker
from sqlalchemy.orm import Session

from . import crud
from .database import get_session
from .errors import BadRequest, CapExceeded
from .models import EventInstance, Family
from .rsvp import save_event, submit_rsvp_as_admin
from .schedule import reference_today
from .storage import init_db

logger = logging.getLogger("uvicorn.error")

_family_suffixes = ["Family", "Household", "Crew", "Clan"]
_diets = ["vegetarian", "vegan", "no nuts", "gluten free", "dairy free"]


def seed_fake_data(
    *,
    family_count: int = 8,
    event_count: int = 6,
    cap: int = 20,
) -> dict[str, int]:
    """Populate the SQLite database with synthetic families and weekly events.

    Dates that already hold more attendance than ``cap`` keep their current
    cap and are counted under ``events_skipped``.
    """
    if family_count < 0:
        raise ValueError("family_count must be >= 0")
    if event_count < 0:
        raise ValueError("event_count must be >= 0")
    if cap < 0:
        raise ValueError("cap must be >= 0")

    init_db()
    fake = Faker()
    stats = {
        "families": 0,
        "events": 0,
        "events_skipped": 0,
        "responses": 0,
        "responses_rejected": 0,
    }

    with get_session() as session:
        families = [_create_family(session, fake) for _ in range(family_count)]
        session.commit()
        stats["families"] = len(families)

        start = reference_today()
        for week in range(event_count):
            date_key = (start + timedelta(weeks=week)).isoformat()
            try:
                event = save_event(session, date_key, cap, fake.sentence())
            except BadRequest as exc:
                logger.info("Seed kept existing event %s: %s", date_key, exc.message)
                stats["events_skipped"] += 1
                continue
            stats["events"] += 1
            created, rejected = _create_responses(session, fake, event, families)
            stats["responses"] += created
            stats["responses_rejected"] += rejected

    return stats


def _create_family(session: Session, fake: Faker) -> Family:
    family = crud.create_family(
        session,
        name=f"{fake.last_name()} {random.choice(_family_suffixes)}",
        notes=fake.sentence() if random.random() < 0.3 else "",
    )
    for _ in range(random.randint(1, 2)):
        crud.add_person(
            session,
            family,
            name=fake.name(),
            email=fake.email(),
            diet_notes=random.choice(_diets) if random.random() < 0.25 else "",
        )
    for _ in range(random.randint(0, 3)):
        crud.add_person(
            session,
            family,
            name=fake.first_name(),
            is_child=True,
            birth_date=fake.date_of_birth(minimum_age=1, maximum_age=17),
        )
    return family


def _create_responses(
    session: Session, fake: Faker, event: EventInstance, families: list[Family]
) -> tuple[int, int]:
    created = rejected = 0
    for family in families:
        if random.random() < 0.4:
            continue
        try:
            submit_rsvp_as_admin(
                session,
                family.id,
                event.date_key,
                random.randint(0, len(family.people)),
                fake.sentence() if random.random() < 0.2 else "",
            )
        except CapExceeded:
            rejected += 1
            continue
        created += 1
    return created, rejected
