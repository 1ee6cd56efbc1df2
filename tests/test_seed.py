from __future__ import annotations

import pytest

from familyrsvp import crud, seed


@pytest.fixture(autouse=True)
def skip_migrations(monkeypatch):
    monkeypatch.setattr(seed, "init_db", lambda: None)


def _assert_within_caps(session):
    session.expire_all()
    for event in crud.events_from(session, "0000-01-01"):
        assert crud.attending_total(session, event.date_key) <= event.cap


def test_seed_fake_data_respects_caps(session):
    stats = seed.seed_fake_data(family_count=6, event_count=3, cap=2)

    assert stats["families"] == 6
    assert stats["events"] == 3
    assert len(list(crud.events_from(session, "0000-01-01"))) == 3
    _assert_within_caps(session)


def test_reseeding_with_lower_cap_keeps_invariant(session, make_family):
    family = make_family("Early")
    seed.seed_fake_data(family_count=0, event_count=1, cap=20)
    first = next(iter(crud.events_from(session, "0000-01-01")))
    crud.put_response(
        session, date_key=first.date_key, family_id=family.id, attending=5, note=""
    )
    session.commit()

    stats = seed.seed_fake_data(family_count=6, event_count=1, cap=0)

    assert stats["events"] == 0
    assert stats["events_skipped"] == 1
    assert stats["responses"] == 0
    session.expire_all()
    assert crud.get_event(session, first.date_key).cap == 20
    _assert_within_caps(session)


def test_seed_fake_data_rejects_negative_counts():
    with pytest.raises(ValueError):
        seed.seed_fake_data(family_count=-1)
