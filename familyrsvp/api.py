"""FastAPI application for Family RSVP."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError, version as pkg_version
from pathlib import Path
import tomllib

import anyio
from fastapi import APIRouter, Depends, FastAPI, Form, Path as PathParam, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import crud, storage
from .capacity import remaining_seats
from .config import _boolify, settings
from .database import SessionLocal
from .errors import BadRequest, NotFound, RSVPError, StoreFailure, Unauthorized
from .models import EventInstance, Family, Person, Response
from .reminders import families_missing_response
from .resolvers import load_family
from .rsvp import (
    AbortCheck,
    list_upcoming_responses,
    save_event,
    submit_rsvp,
    submit_rsvp_as_admin,
)
from .scheduler import start_scheduler, stop_scheduler
from .storage import init_db
from .utils import MAX_SQLITE_INT, parse_date_key, parse_optional_int

# Use uvicorn's error logger so messages get the level prefix in the default log
# format.
logger = logging.getLogger("uvicorn.error")


def _load_app_version() -> str:
    """Return the current package version, falling back to pyproject for dev runs."""
    try:
        return pkg_version("familyrsvp")
    except PackageNotFoundError:
        pyproject_path = Path(__file__).resolve().parent.parent / "pyproject.toml"
        if pyproject_path.exists():
            data = tomllib.loads(pyproject_path.read_text())
            project = data.get("project") or {}
            return str(project.get("version") or "dev")
    return "dev"


APP_VERSION = _load_app_version()


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_db()
    start_scheduler()
    try:
        yield
    finally:
        stop_scheduler()


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def require_admin(root_token: str) -> None:
    if not storage.is_root_token(root_token):
        raise Unauthorized("Invalid admin token")


def _parse_family_id(raw: str | None) -> int:
    family_id = parse_optional_int(raw)
    if family_id is None or family_id <= 0:
        raise BadRequest("family must be a positive integer", field="family")
    return family_id


def _require_token(raw: str | None) -> str:
    token = (raw or "").strip()
    if not token:
        raise BadRequest("token is required", field="token")
    return token


def disconnect_check(request: Request) -> AbortCheck:
    """Return a check, callable from a worker thread, for a dropped client."""

    def should_abort() -> bool:
        return anyio.from_thread.run(request.is_disconnected)

    return should_abort


def _serialize_event(event: EventInstance) -> dict:
    return {
        "date": event.date_key,
        "cap": event.cap,
        "notes": event.notes,
    }


def _serialize_response(response: Response | None) -> dict | None:
    if response is None:
        return None
    return {
        "date": response.event_date,
        "family": response.family_id,
        "attending": response.attending,
        "note": response.note,
        "last_modified": response.last_modified.isoformat(),
    }


def _serialize_person(person: Person) -> dict:
    return {
        "id": person.id,
        "name": person.name,
        "email": person.email,
        "is_child": person.is_child,
        "birth_date": person.birth_date.isoformat() if person.birth_date else None,
        "diet_notes": person.diet_notes,
        "notes": person.notes,
    }


def _serialize_family(
    family: Family, *, include_token: bool = False, include_people: bool = False
) -> dict:
    payload = {"id": family.id, "name": family.name, "notes": family.notes}
    if include_token:
        payload["token"] = family.access_token
    if include_people:
        payload["people"] = [_serialize_person(p) for p in family.people]
    return payload


# Family-facing handlers


async def post_rsvp(
    request: Request,
    family: str | None = Form(None),
    token: str | None = Form(None),
    date: str | None = Form(None),
    attending: str | None = Form(None),
    note: str | None = Form(""),
    db: Session = Depends(get_db),
):
    response = await run_in_threadpool(
        submit_rsvp,
        db,
        _parse_family_id(family),
        _require_token(token),
        date,
        attending,
        note,
        should_abort=disconnect_check(request),
    )
    return PlainTextResponse(
        f"RSVP saved for {response.event_date}: {response.attending} attending"
    )


def get_upcoming(
    family: str | None = Query(None),
    token: str | None = Query(None),
    db: Session = Depends(get_db),
):
    resolved, entries = list_upcoming_responses(
        db, _parse_family_id(family), _require_token(token)
    )
    return {
        "family": _serialize_family(resolved),
        "events": [
            {
                "event": _serialize_event(entry.event),
                "response": _serialize_response(entry.response),
            }
            for entry in entries
        ],
    }


# Admin handlers


async def admin_post_rsvp(
    request: Request,
    root_token: str,
    family: str | None = Form(None),
    date: str | None = Form(None),
    attending: str | None = Form(None),
    note: str | None = Form(""),
    db: Session = Depends(get_db),
):
    await run_in_threadpool(require_admin, root_token)
    response = await run_in_threadpool(
        submit_rsvp_as_admin,
        db,
        _parse_family_id(family),
        date,
        attending,
        note,
        should_abort=disconnect_check(request),
    )
    return PlainTextResponse(
        f"RSVP saved for {response.event_date}: {response.attending} attending"
    )


def admin_create_family(
    root_token: str,
    name: str | None = Form(None),
    notes: str | None = Form(""),
    db: Session = Depends(get_db),
):
    require_admin(root_token)
    try:
        family = crud.create_family(db, name=name or "", notes=notes or "")
    except ValueError as exc:
        raise BadRequest(str(exc), field="name") from exc
    logger.info("Created family %s (%s)", family.id, family.name)
    return JSONResponse(
        {"family": _serialize_family(family, include_token=True)}, status_code=201
    )


def _admin_family(db: Session, family_id: int) -> Family:
    family = load_family(db, family_id)
    if family is None:
        raise NotFound(f"Family {family_id} not found")
    return family


def admin_get_family(
    root_token: str,
    family_id: int = PathParam(ge=1, le=MAX_SQLITE_INT),
    db: Session = Depends(get_db),
):
    require_admin(root_token)
    family = _admin_family(db, family_id)
    return {
        "family": _serialize_family(family, include_token=True, include_people=True)
    }


def admin_add_person(
    root_token: str,
    family_id: int = PathParam(ge=1, le=MAX_SQLITE_INT),
    name: str | None = Form(None),
    email: str | None = Form(None),
    is_child: str | None = Form(None),
    birth_date: str | None = Form(None),
    diet_notes: str | None = Form(""),
    notes: str | None = Form(""),
    db: Session = Depends(get_db),
):
    require_admin(root_token)
    family = _admin_family(db, family_id)
    parsed_birth = None
    if birth_date and birth_date.strip():
        parsed_birth = parse_date_key(birth_date)
        if parsed_birth is None:
            raise BadRequest(
                "birth_date must be in YYYY-MM-DD form", field="birth_date"
            )
    try:
        child = _boolify(is_child) if is_child else False
    except ValueError as exc:
        raise BadRequest("is_child must be true or false", field="is_child") from exc
    try:
        person = crud.add_person(
            db,
            family,
            name=name or "",
            email=email,
            is_child=child,
            birth_date=parsed_birth,
            diet_notes=diet_notes or "",
            notes=notes or "",
        )
    except ValueError as exc:
        raise BadRequest(str(exc), field="name") from exc
    return JSONResponse({"person": _serialize_person(person)}, status_code=201)


def admin_rotate_family_token(
    root_token: str,
    family_id: int = PathParam(ge=1, le=MAX_SQLITE_INT),
    db: Session = Depends(get_db),
):
    require_admin(root_token)
    family = _admin_family(db, family_id)
    crud.rotate_family_token(db, family)
    logger.info("Rotated access token for family %s", family.id)
    return {"family": _serialize_family(family, include_token=True)}


def admin_save_event(
    root_token: str,
    date: str | None = Form(None),
    cap: str | None = Form(None),
    notes: str | None = Form(""),
    db: Session = Depends(get_db),
):
    require_admin(root_token)
    event = save_event(db, date, cap, notes)
    return {"event": _serialize_event(event)}


def admin_get_event(root_token: str, date_key: str, db: Session = Depends(get_db)):
    require_admin(root_token)
    event = crud.get_event(db, date_key)
    if event is None:
        raise NotFound(f"Event {date_key} not found")
    responses = crud.responses_for_event(db, date_key)
    return {
        "event": _serialize_event(event),
        "responses": [_serialize_response(r) for r in responses],
        "attending": sum(r.attending for r in responses),
        "remaining": remaining_seats(db, date_key, event.cap),
    }


def admin_reminders(
    root_token: str,
    days: str | None = Query(None),
    db: Session = Depends(get_db),
):
    require_admin(root_token)
    within = settings.reminder_days if days is None else parse_optional_int(days)
    if within is None or within < 0:
        raise BadRequest("days must be a non-negative integer", field="days")
    return {
        "days": within,
        "events": [
            {
                "event": _serialize_event(batch.event),
                "families": [_serialize_family(f) for f in batch.families],
            }
            for batch in families_missing_response(db, within)
        ],
    }


def build_router() -> APIRouter:
    """Return the routing table for the application."""
    router = APIRouter()
    router.add_api_route("/rsvp", post_rsvp, methods=["POST"])
    router.add_api_route("/upcoming", get_upcoming, methods=["GET"])
    router.add_api_route("/admin/{root_token}/rsvp", admin_post_rsvp, methods=["POST"])
    router.add_api_route(
        "/admin/{root_token}/families", admin_create_family, methods=["POST"]
    )
    router.add_api_route(
        "/admin/{root_token}/families/{family_id}", admin_get_family, methods=["GET"]
    )
    router.add_api_route(
        "/admin/{root_token}/families/{family_id}/people",
        admin_add_person,
        methods=["POST"],
    )
    router.add_api_route(
        "/admin/{root_token}/families/{family_id}/token",
        admin_rotate_family_token,
        methods=["POST"],
    )
    router.add_api_route("/admin/{root_token}/events", admin_save_event, methods=["POST"])
    router.add_api_route(
        "/admin/{root_token}/events/{date_key}", admin_get_event, methods=["GET"]
    )
    router.add_api_route(
        "/admin/{root_token}/reminders", admin_reminders, methods=["GET"]
    )
    return router


async def rsvp_error_handler(request: Request, exc: RSVPError):
    if exc.status_code >= 500:
        logger.error(
            "%s on %s %s: %s", exc.kind, request.method, request.url.path, exc.message
        )
    return JSONResponse(exc.as_dict(), status_code=exc.status_code)


async def validation_error_handler(request: Request, exc: RequestValidationError):
    fields = sorted(
        {str(err.get("loc", ["", "?"])[-1]) for err in exc.errors()}
    )
    error = BadRequest(f"Invalid input: {', '.join(fields)}")
    return JSONResponse(error.as_dict(), status_code=error.status_code)


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    kind = "NotFound" if exc.status_code == 404 else "HTTPError"
    return JSONResponse(
        {"error": kind, "message": str(exc.detail)},
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


async def operational_error_handler(request: Request, exc: SQLAlchemyError):
    raw = str(exc.orig) if getattr(exc, "orig", None) else str(exc)
    logger.error(
        "Database error on %s %s: %s", request.method, request.url.path, raw
    )
    error = StoreFailure("The database is busy at the moment. Please try again.")
    return JSONResponse(error.as_dict(), status_code=error.status_code)


async def generic_exception_handler(request: Request, exc: Exception):
    logger.exception(
        "Unhandled error while processing %s %s", request.method, request.url.path
    )
    return JSONResponse(
        {"error": "InternalError", "message": "Internal server error"},
        status_code=500,
    )


def create_app() -> FastAPI:
    """Build the application with its routing table and error handlers."""
    app = FastAPI(title="Family RSVP", version=APP_VERSION, lifespan=lifespan)
    app.add_exception_handler(RSVPError, rsvp_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(OperationalError, operational_error_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
    app.include_router(build_router())
    return app
