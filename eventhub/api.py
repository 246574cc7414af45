"""FastAPI application for EventHub."""

from __future__ import annotations

import logging
import tomllib
from contextlib import asynccontextmanager
from datetime import date
from importlib.metadata import PackageNotFoundError, version as pkg_version
from pathlib import Path

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import config
from .crud import (
    attendance_summary,
    authenticate,
    check_admin_invite,
    create_event,
    create_user,
    delete_event,
    effective_role,
    get_user_registrations,
    list_attendees,
    list_categories,
    list_events,
    require_event,
    reset_password,
    update_event,
    upsert_registration,
    withdraw_registration,
)
from .database import SessionLocal, dispose_engine
from .errors import EventHubError
from .models import Category, Event, Registration, User
from .schemas import (
    EventCreateRequest,
    EventDeleteRequest,
    EventUpdateRequest,
    RecoverPasswordRequest,
    RegistrationRequest,
    SigninRequest,
    SignupRequest,
    UnregisterRequest,
    format_errors,
)
from .session_record import SessionRecord
from .storage import init_db
from .utils import format_time, isoformat_or_none

# Use uvicorn's error logger so messages get the level prefix in the default log
# format.
logger = logging.getLogger("uvicorn.error")

LOCALHOST_ORIGIN_PATTERN = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"


def _load_app_version() -> str:
    """Return the current package version, falling back to pyproject for dev runs."""
    try:
        return pkg_version("eventhub")
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
    try:
        yield
    finally:
        dispose_engine()


app = FastAPI(title="EventHub", version=APP_VERSION, lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[config.settings.normalized_frontend_url],
    allow_origin_regex=(
        LOCALHOST_ORIGIN_PATTERN if config.settings.allow_localhost_origins else None
    ),
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
)

router = APIRouter()


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


# -------- Error handling --------


@app.exception_handler(EventHubError)
async def eventhub_error_handler(request: Request, exc: EventHubError):
    if exc.status_code >= 500:
        logger.error(
            "Request %s %s failed: %s", request.method, request.url.path, exc.detail
        )
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse({"error": format_errors(exc.errors())}, status_code=400)


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    logger.warning(
        "Integrity error on %s %s: %s",
        request.method,
        request.url.path,
        getattr(exc, "orig", exc),
    )
    return JSONResponse({"error": "Resource already exists"}, status_code=409)


@app.exception_handler(OperationalError)
async def operational_error_handler(request: Request, exc: OperationalError):
    raw = str(exc.orig) if getattr(exc, "orig", None) else str(exc)
    if "database is locked" in raw.lower():
        logger.error(
            "Database is locked while handling %s %s",
            request.method,
            request.url.path,
        )
        return JSONResponse(
            {"error": "The database is busy. Please try again."}, status_code=503
        )
    logger.error(
        "Operational database error on %s %s: %s",
        request.method,
        request.url.path,
        raw,
    )
    return JSONResponse({"error": "Internal server error"}, status_code=500)


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception(
        "Database error while processing %s %s", request.method, request.url.path
    )
    return JSONResponse({"error": "Internal server error"}, status_code=500)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Gracefully handle unexpected errors."""
    logger.exception(
        "Unhandled error while processing %s %s", request.method, request.url.path
    )
    return JSONResponse({"error": "Internal server error"}, status_code=500)


# -------- Serialization --------


def _serialize_user(user: User):
    return {
        "id": user.id,
        "username": user.username,
        "name": user.username,
        "email": user.email,
        "role": effective_role(user),
        "createdAt": isoformat_or_none(user.created_at),
    }


def _serialize_category(category: Category | None):
    if category is None:
        return None
    return {"id": category.id, "name": category.name}


def _serialize_registration(registration: Registration, *, include_email: bool = False):
    payload = {
        "id": registration.id,
        "userId": registration.user_id,
        "eventId": registration.event_id,
        "status": registration.status,
        "registeredAt": isoformat_or_none(registration.registered_at),
        "updatedAt": isoformat_or_none(registration.updated_at),
    }
    if registration.user is not None:
        payload["user"] = {
            "id": registration.user.id,
            "name": registration.user.username,
        }
        if include_email:
            payload["user"]["email"] = registration.user.email
    return payload


def _serialize_event(event: Event):
    registrations = list(event.registrations)
    creator = event.creator
    return {
        "id": event.id,
        "title": event.title,
        "description": event.description,
        "location": event.location,
        "eventDate": isoformat_or_none(event.event_date),
        "eventTime": format_time(event.event_time),
        "categoryId": event.category_id,
        "category": _serialize_category(event.category),
        "creatorId": event.creator_id,
        "creator": {
            "id": creator.id,
            "name": creator.username,
            "role": effective_role(creator),
        }
        if creator
        else None,
        "maxAttendees": event.max_attendees,
        "registrations": [_serialize_registration(r) for r in registrations],
        "attendance": attendance_summary(registrations, event.max_attendees),
        "createdAt": isoformat_or_none(event.created_at),
        "updatedAt": isoformat_or_none(event.updated_at),
    }


# -------- Routes --------


@app.get("/", include_in_schema=False)
def index():
    return PlainTextResponse("Community Event Planner API is running")


@router.post("/users/signup", status_code=201)
def signup(payload: SignupRequest, db: Session = Depends(get_db)):
    check_admin_invite(
        payload.role,
        payload.admin_invite_key,
        settings=config.settings,
    )
    user = create_user(
        db,
        username=payload.username,
        email=payload.email,
        password=payload.password,
        role=payload.role,
    )
    logger.info("Registered user %s (role=%s)", user.id, user.role)
    return {"message": "User registered successfully", "data": _serialize_user(user)}


@router.post("/users/signin")
def signin(payload: SigninRequest, db: Session = Depends(get_db)):
    user = authenticate(db, identifier=payload.username, password=payload.password)
    return {
        "message": "User signed in successfully",
        "user": _serialize_user(user),
        "session": SessionRecord.from_user(user).model_dump(by_alias=True),
    }


@router.post("/users/recover-password")
def recover_password(payload: RecoverPasswordRequest, db: Session = Depends(get_db)):
    reset_password(
        db,
        username=payload.username,
        email=payload.email,
        new_password=payload.new_password,
    )
    return {"message": "Password updated successfully"}


@router.get("/categories")
def api_list_categories(db: Session = Depends(get_db)):
    return {"data": [_serialize_category(c) for c in list_categories(db)]}


@router.get("/events")
def api_list_events(
    search: str | None = Query(None, max_length=200),
    category: str | None = Query(None, max_length=100),
    category_id: int | None = Query(None, alias="categoryId", ge=1),
    event_date: date | None = Query(None, alias="date"),
    db: Session = Depends(get_db),
):
    events = list_events(
        db,
        search=search,
        category_id=category_id,
        category_name=category,
        event_date=event_date,
    )
    return {"data": [_serialize_event(e) for e in events], "count": len(events)}


@router.get("/events/{event_id}")
def api_get_event(event_id: int, db: Session = Depends(get_db)):
    return {"data": _serialize_event(require_event(db, event_id))}


@router.post("/events/create", status_code=201)
def api_create_event(payload: EventCreateRequest, db: Session = Depends(get_db)):
    event = create_event(
        db,
        title=payload.title,
        description=payload.description,
        location=payload.location,
        event_date=payload.event_date,
        event_time=payload.event_time,
        creator_id=payload.creator_id,
        category_name=payload.category,
        max_attendees=payload.max_attendees,
    )
    db.refresh(event)
    return {"message": "Event created successfully", "data": _serialize_event(event)}


@router.post("/events/editEvent")
def api_edit_event(payload: EventUpdateRequest, db: Session = Depends(get_db)):
    changes = payload.model_dump(
        exclude_unset=True, exclude={"id", "creator_id", "requester_role"}
    )
    event = update_event(
        db, event_id=payload.id, requester_id=payload.creator_id, changes=changes
    )
    return {"message": "Event updated successfully", "data": _serialize_event(event)}


@router.delete("/events/deleteEvent")
def api_delete_event(payload: EventDeleteRequest, db: Session = Depends(get_db)):
    delete_event(db, event_id=payload.id, requester_id=payload.creator_id)
    logger.info("Event %s deleted by user %s", payload.id, payload.creator_id)
    return {"message": "Event deleted successfully"}


@router.get("/events/{event_id}/attendees")
def api_list_attendees(event_id: int, db: Session = Depends(get_db)):
    event = require_event(db, event_id)
    attendees = list_attendees(db, event.id)
    return {
        "data": [_serialize_registration(r, include_email=True) for r in attendees],
        "summary": attendance_summary(attendees, event.max_attendees),
    }


@router.post("/registrations/register")
def api_register(payload: RegistrationRequest, db: Session = Depends(get_db)):
    registration = upsert_registration(
        db, user_id=payload.user_id, event_id=payload.event_id, status=payload.status
    )
    return {"message": "RSVP saved", "data": _serialize_registration(registration)}


@router.post("/registrations/unregister")
def api_unregister(payload: UnregisterRequest, db: Session = Depends(get_db)):
    withdraw_registration(db, user_id=payload.user_id, event_id=payload.event_id)
    return {"message": "RSVP removed"}


@router.get("/registrations/user/{user_id}")
def api_user_registrations(user_id: int, db: Session = Depends(get_db)):
    registrations = get_user_registrations(db, user_id)
    return {
        "data": [
            {
                **_serialize_registration(r),
                "event": {
                    "id": r.event.id,
                    "title": r.event.title,
                    "eventDate": isoformat_or_none(r.event.event_date),
                    "eventTime": format_time(r.event.event_time),
                    "location": r.event.location,
                    "category": _serialize_category(r.event.category),
                },
            }
            for r in registrations
        ]
    }


app.include_router(router)
# The browser client addresses the same routes under /api.
app.include_router(router, prefix="/api", include_in_schema=False)
