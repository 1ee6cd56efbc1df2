from __future__ import annotations

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from familyrsvp import api, crud, database
from familyrsvp.schedule import reference_today
from familyrsvp.storage import ensure_root_token

DATE = "2099-06-01"


@pytest.fixture()
def client(monkeypatch):
    """FastAPI test client with migrations and the scheduler disabled."""

    monkeypatch.setattr(api, "init_db", lambda: None)
    monkeypatch.setattr(api, "start_scheduler", lambda: None)
    monkeypatch.setattr(api, "stop_scheduler", lambda: None)
    with TestClient(api.create_app()) as test_client:
        yield test_client


@pytest.fixture()
def root_token():
    return ensure_root_token()


def _rsvp(client, family, *, date=DATE, attending="1", note="", token=None):
    return client.post(
        "/rsvp",
        data={
            "family": str(family.id),
            "token": token if token is not None else family.access_token,
            "date": date,
            "attending": attending,
            "note": note,
        },
    )


def test_post_rsvp_acknowledges_with_text(client, make_family, make_event):
    family = make_family()
    make_event(cap=5)

    response = _rsvp(client, family, attending="3", note="we'll bring salad")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert response.text == f"RSVP saved for {DATE}: 3 attending"
    session = database.SessionLocal()
    stored = crud.get_response(session, DATE, family.id)
    assert stored.attending == 3
    assert stored.note == "we'll bring salad"
    session.close()


def test_post_rsvp_cap_exceeded(client, make_family, make_event):
    first = make_family("First")
    second = make_family("Second")
    make_event(cap=5)
    assert _rsvp(client, first, attending="5").status_code == 200

    response = _rsvp(client, second, attending="1")

    assert response.status_code == 409
    assert response.json()["error"] == "CapExceeded"
    assert _rsvp(client, second, attending="0").status_code == 200


def test_post_rsvp_unauthorized_is_uniform(client, make_family, make_event):
    family = make_family(token="secret-token")
    make_event(cap=5)

    wrong_token = _rsvp(client, family, token="guess")
    missing = client.post(
        "/rsvp",
        data={"family": "9999", "token": "secret-token", "date": DATE, "attending": "1"},
    )

    assert wrong_token.status_code == missing.status_code == 403
    assert wrong_token.json() == missing.json()
    assert "secret-token" not in wrong_token.text
    assert "guess" not in wrong_token.text


def test_post_rsvp_unknown_event(client, make_family):
    family = make_family()

    response = _rsvp(client, family, date="2099-01-01")

    assert response.status_code == 404
    assert response.json() == {
        "error": "NotFound",
        "message": "Event 2099-01-01 not found",
    }


@pytest.mark.parametrize(
    "overrides",
    [
        {"family": "abc"},
        {"family": "-2"},
        {"token": ""},
        {"attending": "-1"},
        {"attending": "many"},
        {"date": "06/01/2099"},
    ],
)
def test_post_rsvp_bad_request(client, make_family, make_event, overrides):
    family = make_family()
    make_event(cap=5)
    data = {
        "family": str(family.id),
        "token": family.access_token,
        "date": DATE,
        "attending": "1",
        "note": "",
    }
    data.update(overrides)

    response = client.post("/rsvp", data=data)

    assert response.status_code == 400
    assert response.json()["error"] == "BadRequest"


def test_upcoming_lists_events_with_own_response(client, make_family, make_event):
    family = make_family()
    other = make_family("Other")
    today = reference_today()
    past = (today - timedelta(days=3)).isoformat()
    soon = (today + timedelta(days=3)).isoformat()
    later = (today + timedelta(days=10)).isoformat()
    for date_key in (later, past, soon):
        make_event(date_key=date_key, cap=10)
    assert _rsvp(client, family, date=later, attending="2").status_code == 200
    assert _rsvp(client, other, date=soon, attending="4").status_code == 200

    response = client.get(
        "/upcoming", params={"family": family.id, "token": family.access_token}
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["family"]["id"] == family.id
    assert "token" not in payload["family"]
    assert [item["event"]["date"] for item in payload["events"]] == [soon, later]
    assert payload["events"][0]["response"] is None
    assert payload["events"][1]["response"]["attending"] == 2


def test_upcoming_rejects_wrong_token(client, make_family):
    family = make_family()

    response = client.get("/upcoming", params={"family": family.id, "token": "nope"})

    assert response.status_code == 403


def test_admin_requires_root_token(client, make_family, make_event, root_token):
    family = make_family()
    make_event(cap=5)

    response = client.post(
        "/admin/not-the-root/rsvp",
        data={"family": str(family.id), "date": DATE, "attending": "1"},
    )

    assert response.status_code == 403
    assert response.json()["message"] == "Invalid admin token"


def test_admin_rsvp_override_enforces_cap(client, make_family, make_event, root_token):
    first = make_family("First")
    second = make_family("Second")
    make_event(cap=3)
    path = f"/admin/{root_token}/rsvp"

    ok = client.post(path, data={"family": str(first.id), "date": DATE, "attending": "3"})
    full = client.post(
        path, data={"family": str(second.id), "date": DATE, "attending": "1"}
    )
    unknown = client.post(path, data={"family": "999", "date": DATE, "attending": "1"})

    assert ok.status_code == 200
    assert full.status_code == 409
    assert unknown.status_code == 404


def test_admin_family_lifecycle(client, root_token):
    created = client.post(
        f"/admin/{root_token}/families", data={"name": "Garcia", "notes": "vegetarian"}
    )
    assert created.status_code == 201
    family = created.json()["family"]
    assert family["name"] == "Garcia"
    assert family["token"]

    person = client.post(
        f"/admin/{root_token}/families/{family['id']}/people",
        data={
            "name": "Ana",
            "email": "ana@example.com",
            "is_child": "true",
            "birth_date": "2016-04-02",
        },
    )
    assert person.status_code == 201
    assert person.json()["person"]["is_child"] is True

    detail = client.get(f"/admin/{root_token}/families/{family['id']}")
    assert detail.status_code == 200
    assert [p["name"] for p in detail.json()["family"]["people"]] == ["Ana"]

    rotated = client.post(f"/admin/{root_token}/families/{family['id']}/token")
    assert rotated.status_code == 200
    assert rotated.json()["family"]["token"] != family["token"]


def test_admin_family_validation(client, root_token):
    assert client.post(f"/admin/{root_token}/families", data={"name": " "}).status_code == 400
    assert client.get(f"/admin/{root_token}/families/404").status_code == 404

    created = client.post(f"/admin/{root_token}/families", data={"name": "Lee"}).json()
    bad_birth = client.post(
        f"/admin/{root_token}/families/{created['family']['id']}/people",
        data={"name": "Kim", "birth_date": "yesterday"},
    )
    assert bad_birth.status_code == 400
    assert "birth_date" in bad_birth.json()["message"]


def test_admin_event_create_update_and_detail(client, make_family, root_token):
    family = make_family()
    created = client.post(
        f"/admin/{root_token}/events", data={"date": DATE, "cap": "6", "notes": "Potluck"}
    )
    assert created.status_code == 200
    assert created.json()["event"] == {"date": DATE, "cap": 6, "notes": "Potluck"}
    assert _rsvp(client, family, attending="4").status_code == 200

    too_small = client.post(f"/admin/{root_token}/events", data={"date": DATE, "cap": "3"})
    assert too_small.status_code == 400

    detail = client.get(f"/admin/{root_token}/events/{DATE}")
    assert detail.status_code == 200
    payload = detail.json()
    assert payload["attending"] == 4
    assert payload["remaining"] == 2
    assert payload["responses"][0]["family"] == family.id

    assert client.get(f"/admin/{root_token}/events/2099-12-31").status_code == 404


def test_admin_reminders_lists_families_without_answers(
    client, make_family, make_event, root_token
):
    answered = make_family("Answered")
    silent = make_family("Silent")
    soon = (reference_today() + timedelta(days=1)).isoformat()
    far = (reference_today() + timedelta(days=30)).isoformat()
    make_event(date_key=soon, cap=10)
    make_event(date_key=far, cap=10)
    assert _rsvp(client, answered, date=soon, attending="0").status_code == 200

    response = client.get(f"/admin/{root_token}/reminders", params={"days": 3})

    assert response.status_code == 200
    events = response.json()["events"]
    assert [item["event"]["date"] for item in events] == [soon]
    assert [f["id"] for f in events[0]["families"]] == [silent.id]

    assert (
        client.get(f"/admin/{root_token}/reminders", params={"days": "x"}).status_code
        == 400
    )


def test_unknown_path_param_type_is_bad_request(client, root_token):
    response = client.get(f"/admin/{root_token}/families/not-a-number")

    assert response.status_code == 400
    assert response.json()["error"] == "BadRequest"


def test_unknown_route_uses_error_shape(client):
    response = client.get("/nowhere")

    assert response.status_code == 404
    assert response.json()["error"] == "NotFound"


TOO_BIG = str(2**63)


def test_oversized_integers_are_bad_requests(
    client, make_family, make_event, root_token
):
    family = make_family()
    make_event(cap=5)

    responses = [
        _rsvp(client, family, attending=TOO_BIG),
        client.post(
            "/rsvp",
            data={"family": TOO_BIG, "token": "x", "date": DATE, "attending": "1"},
        ),
        client.get("/upcoming", params={"family": TOO_BIG, "token": "x"}),
        client.post(
            f"/admin/{root_token}/rsvp",
            data={"family": TOO_BIG, "date": DATE, "attending": "1"},
        ),
        client.post(f"/admin/{root_token}/events", data={"date": DATE, "cap": TOO_BIG}),
        client.get(f"/admin/{root_token}/families/{TOO_BIG}"),
        client.post(f"/admin/{root_token}/families/{TOO_BIG}/token"),
    ]

    for response in responses:
        assert response.status_code == 400, response.text
        assert response.json()["error"] == "BadRequest"


def test_reminders_with_huge_window(client, make_family, make_event, root_token):
    make_family()
    make_event(date_key=(reference_today() + timedelta(days=2)).isoformat(), cap=5)

    response = client.get(f"/admin/{root_token}/reminders", params={"days": TOO_BIG[:-1]})

    assert response.status_code == 200
    assert len(response.json()["events"]) == 1


def test_cancelled_request_saves_nothing(
    client, make_family, make_event, monkeypatch
):
    family = make_family()
    make_event(cap=5)
    monkeypatch.setattr(api, "disconnect_check", lambda request: lambda: True)

    response = _rsvp(client, family, attending="2")

    assert response.status_code == 499
    assert response.json()["error"] == "Cancelled"
    session = database.SessionLocal()
    assert crud.get_response(session, DATE, family.id) is None
    session.close()


def test_admin_person_records_diet_notes(client, root_token):
    family = client.post(f"/admin/{root_token}/families", data={"name": "Cho"}).json()
    path = f"/admin/{root_token}/families/{family['family']['id']}/people"

    created = client.post(path, data={"name": "Min", "diet_notes": " no shellfish "})

    assert created.status_code == 201
    assert created.json()["person"]["diet_notes"] == "no shellfish"
