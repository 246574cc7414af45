"""CRUD helpers for users, categories, events, and registrations."""

from __future__ import annotations

import logging
from datetime import date, datetime, time
from typing import Any, Sequence

from sqlalchemy import delete, func, or_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload, selectinload

from .config import Settings
from .errors import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    NotFoundError,
    UnavailableError,
    ValidationError,
)
from .models import (
    ROLE_ADMIN,
    STATUS_GOING,
    STATUS_MAYBE,
    STATUS_NOT_GOING,
    VALID_REGISTRATION_STATUSES,
    VALID_ROLES,
    Category,
    Event,
    Registration,
    User,
)
from .policy import LEGACY_ADMIN_USERNAME, require_mutation_rights, resolve_role
from .security import hash_password, invite_key_matches, verify_password
from .utils import clean_text, name_key, normalize_email, utcnow

logger = logging.getLogger(__name__)

CATEGORY_CREATE_ATTEMPTS = 3
UPDATABLE_EVENT_FIELDS = (
    "title",
    "description",
    "location",
    "event_date",
    "event_time",
    "max_attendees",
)


def _now() -> datetime:
    return utcnow()


# -------- Users --------


def get_user(session: Session, user_id: int) -> User | None:
    return session.get(User, user_id)


def get_user_by_username(session: Session, username: str) -> User | None:
    normalized = (username or "").strip().lower()
    if not normalized:
        return None
    stmt = select(User).where(func.lower(User.username) == normalized)
    return session.scalars(stmt).first()


def get_user_by_email(session: Session, email: str) -> User | None:
    normalized = normalize_email(email)
    if not normalized:
        return None
    return session.scalars(select(User).where(User.email == normalized)).first()


def effective_role(user: User) -> str:
    return resolve_role(user.username, user.role)


def check_admin_invite(role: str, provided_key: str | None, *, settings: Settings) -> None:
    """Gate admin signups behind the configured invite key."""
    if role != ROLE_ADMIN:
        return
    if not settings.invite_key_configured:
        raise UnavailableError("Admin signup is not available on this server")
    if not invite_key_matches(provided_key, settings.admin_invite_key):
        raise AuthorizationError("Invalid admin invite key")


def create_user(
    session: Session,
    *,
    username: str,
    email: str,
    password: str,
    role: str = "user",
) -> User:
    """Create and persist a new account."""
    if role not in VALID_ROLES:
        raise ValidationError("Invalid role")
    cleaned_username = clean_text(username)
    if not cleaned_username:
        raise ValidationError("Username is required")
    if name_key(cleaned_username) == LEGACY_ADMIN_USERNAME and role != ROLE_ADMIN:
        # resolve_role promotes this name to admin.
        raise ConflictError("Username is reserved")
    if get_user_by_username(session, cleaned_username):
        raise ConflictError("Username is already taken")
    if get_user_by_email(session, email):
        raise ConflictError("User with this email already exists")

    user = User(
        username=cleaned_username,
        email=normalize_email(email),
        password_hash=hash_password(password),
        role=role,
    )
    session.add(user)
    try:
        session.flush()
    except IntegrityError as exc:
        raise ConflictError("User with this username or email already exists") from exc
    return user


def authenticate(session: Session, *, identifier: str, password: str) -> User:
    """Return the user matching a username (or email) and password."""
    if "@" in (identifier or ""):
        user = get_user_by_email(session, identifier)
    else:
        user = get_user_by_username(session, identifier)
    if not user:
        raise NotFoundError("No account found with that username")
    if not verify_password(password, user.password_hash):
        raise AuthenticationError("Invalid password")
    return user


def reset_password(
    session: Session, *, username: str, email: str, new_password: str
) -> User:
    user = get_user_by_username(session, username)
    if not user or user.email != normalize_email(email):
        raise NotFoundError("No account matches that username and email")
    user.password_hash = hash_password(new_password)
    session.add(user)
    session.flush()
    return user


# -------- Categories --------


def list_categories(session: Session) -> Sequence[Category]:
    return session.scalars(select(Category).order_by(Category.name_key)).all()


def get_category_by_name(session: Session, name: str | None) -> Category | None:
    key = name_key(name)
    if not key:
        return None
    return session.scalars(select(Category).where(Category.name_key == key)).first()


def resolve_category_id(session: Session, name: str | None) -> int | None:
    """Find or create a category by name, ignoring case.

    A concurrent request may create the same category between the lookup and
    the insert; the unique key makes that insert fail, and the lookup is
    retried instead of surfacing the conflict.
    """
    display_name = clean_text(name)
    if not display_name:
        return None
    key = display_name.casefold()
    for attempt in range(1, CATEGORY_CREATE_ATTEMPTS + 1):
        existing = get_category_by_name(session, key)
        if existing:
            return existing.id
        try:
            with session.begin_nested():
                category = Category(name=display_name, name_key=key)
                session.add(category)
            return category.id
        except IntegrityError:
            logger.info(
                "Category %r was created concurrently (attempt %d); retrying lookup",
                display_name,
                attempt,
            )
    raise ConflictError("Could not resolve category, please try again")


# -------- Events --------


def get_event(session: Session, event_id: int) -> Event | None:
    return session.get(Event, event_id)


def require_event(session: Session, event_id: int) -> Event:
    event = get_event(session, event_id)
    if not event:
        raise NotFoundError("Event not found")
    return event


def list_events(
    session: Session,
    *,
    search: str | None = None,
    category_id: int | None = None,
    category_name: str | None = None,
    event_date: date | None = None,
) -> Sequence[Event]:
    """Return events matching the optional filters, soonest first."""
    stmt = select(Event).options(
        joinedload(Event.category),
        joinedload(Event.creator),
        selectinload(Event.registrations).joinedload(Registration.user),
    )
    term = (search or "").strip()
    if term:
        pattern = f"%{term}%"
        stmt = stmt.where(or_(Event.title.ilike(pattern), Event.description.ilike(pattern)))
    if category_id is not None:
        stmt = stmt.where(Event.category_id == category_id)
    key = name_key(category_name)
    if key:
        stmt = stmt.join(Category, Event.category_id == Category.id).where(
            Category.name_key == key
        )
    if event_date is not None:
        stmt = stmt.where(Event.event_date == event_date)
    stmt = stmt.order_by(Event.event_date.asc(), Event.event_time.asc(), Event.id.asc())
    return session.scalars(stmt).unique().all()


def create_event(
    session: Session,
    *,
    title: str,
    description: str | None,
    location: str,
    event_date: date,
    event_time: time,
    creator_id: int,
    category_name: str | None = None,
    max_attendees: int | None = None,
) -> Event:
    """Create and persist a new event owned by ``creator_id``."""
    if not get_user(session, creator_id):
        raise NotFoundError("Creator not found")
    event = Event(
        title=title,
        description=description or "",
        location=location,
        event_date=event_date,
        event_time=event_time,
        category_id=resolve_category_id(session, category_name),
        creator_id=creator_id,
        max_attendees=_normalize_max_attendees(max_attendees),
    )
    session.add(event)
    session.flush()
    return event


def _normalize_max_attendees(value: int | None) -> int | None:
    if value is None:
        return None
    return value if value > 0 else None


def _authorize_event_mutation(
    session: Session, event: Event, requester_id: int, *, action: str
) -> None:
    # The role comes from the stored account, never from the request alone.
    requester = get_user(session, requester_id)
    if requester is None:
        raise AuthorizationError(f"You do not have permission to {action} this event")
    require_mutation_rights(
        requester.id, effective_role(requester), event.creator_id, action=action
    )


def update_event(
    session: Session,
    *,
    event_id: int,
    requester_id: int,
    changes: dict[str, Any],
) -> Event:
    """Apply ``changes`` to an event the requester owns (or administers).

    Only keys present in ``changes`` are written; a ``category`` key is
    resolved by name and an empty value clears it.
    """
    event = require_event(session, event_id)
    _authorize_event_mutation(session, event, requester_id, action="edit")

    for field in UPDATABLE_EVENT_FIELDS:
        if field not in changes:
            continue
        value = changes[field]
        if field == "max_attendees":
            value = _normalize_max_attendees(value)
        elif field == "description":
            value = value or ""
        elif value is None:
            raise ValidationError(f"{field} cannot be empty")
        setattr(event, field, value)
    if "category" in changes:
        event.category_id = resolve_category_id(session, changes["category"])
    event.updated_at = _now()
    session.add(event)
    session.flush()
    session.refresh(event)
    return event


def delete_event(session: Session, *, event_id: int, requester_id: int) -> None:
    """Delete an event and, by cascade, its registrations."""
    event = require_event(session, event_id)
    _authorize_event_mutation(session, event, requester_id, action="delete")
    session.delete(event)
    session.flush()


# -------- Registrations --------


def get_registration(
    session: Session, *, user_id: int, event_id: int
) -> Registration | None:
    stmt = (
        select(Registration)
        .where(Registration.user_id == user_id, Registration.event_id == event_id)
        .execution_options(populate_existing=True)
    )
    return session.scalars(stmt).first()


def _upsert_insert(dialect_name: str):
    if dialect_name == "sqlite":
        return sqlite.insert
    if dialect_name == "postgresql":
        return postgresql.insert
    return None


def upsert_registration(
    session: Session, *, user_id: int, event_id: int, status: str
) -> Registration:
    """Create the user's RSVP for an event or overwrite its status.

    There is at most one registration per (user, event); the original
    ``registered_at`` survives updates.
    """
    normalized = (status or "").strip().lower()
    if normalized not in VALID_REGISTRATION_STATUSES:
        raise ValidationError("Status must be one of: going, maybe, notgoing")
    if not get_user(session, user_id):
        raise NotFoundError("User not found")
    if not get_event(session, event_id):
        raise NotFoundError("Event not found")

    now = _now()
    insert = _upsert_insert(session.get_bind().dialect.name)
    if insert is not None:
        stmt = insert(Registration).values(
            user_id=user_id,
            event_id=event_id,
            status=normalized,
            registered_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "event_id"],
            set_={"status": stmt.excluded.status, "updated_at": stmt.excluded.updated_at},
        )
        session.execute(stmt)
    else:
        _upsert_registration_portable(
            session, user_id=user_id, event_id=event_id, status=normalized, now=now
        )

    registration = get_registration(session, user_id=user_id, event_id=event_id)
    if registration is None:
        raise NotFoundError("Registration not found")
    return registration


def _upsert_registration_portable(
    session: Session, *, user_id: int, event_id: int, status: str, now: datetime
) -> None:
    existing = get_registration(session, user_id=user_id, event_id=event_id)
    if existing is None:
        try:
            with session.begin_nested():
                session.add(
                    Registration(
                        user_id=user_id,
                        event_id=event_id,
                        status=status,
                        registered_at=now,
                        updated_at=now,
                    )
                )
            return
        except IntegrityError:
            existing = get_registration(session, user_id=user_id, event_id=event_id)
            if existing is None:
                raise
    existing.status = status
    existing.updated_at = now
    session.add(existing)
    session.flush()


def withdraw_registration(session: Session, *, user_id: int, event_id: int) -> None:
    """Remove the user's RSVP; a missing registration is a not-found error."""
    result = session.execute(
        delete(Registration)
        .where(Registration.user_id == user_id, Registration.event_id == event_id)
    )
    if result.rowcount == 0:
        raise NotFoundError("Registration not found")


def list_attendees(session: Session, event_id: int) -> Sequence[Registration]:
    stmt = (
        select(Registration)
        .options(joinedload(Registration.user))
        .where(Registration.event_id == event_id)
        .order_by(Registration.registered_at.asc(), Registration.id.asc())
    )
    return session.scalars(stmt).all()


def get_user_registrations(session: Session, user_id: int) -> Sequence[Registration]:
    if not get_user(session, user_id):
        raise NotFoundError("User not found")
    stmt = (
        select(Registration)
        .options(joinedload(Registration.event).joinedload(Event.category))
        .where(Registration.user_id == user_id)
        .order_by(Registration.registered_at.desc(), Registration.id.desc())
    )
    return session.scalars(stmt).all()


def attendance_summary(
    registrations: Sequence[Registration], max_attendees: int | None
) -> dict[str, Any]:
    """Count RSVPs by status and compute the capacity view.

    Everyone who has not declined counts toward capacity.
    """
    going = sum(1 for r in registrations if r.status == STATUS_GOING)
    maybe = sum(1 for r in registrations if r.status == STATUS_MAYBE)
    not_going = sum(1 for r in registrations if r.status == STATUS_NOT_GOING)
    attendee_count = going + maybe
    has_capacity_limit = bool(max_attendees and max_attendees > 0)
    spots_left = max(max_attendees - attendee_count, 0) if has_capacity_limit else None
    return {
        "going": going,
        "maybe": maybe,
        "notgoing": not_going,
        "attendeeCount": attendee_count,
        "maxAttendees": max_attendees,
        "hasCapacityLimit": has_capacity_limit,
        "spotsLeft": spots_left,
        "isFull": has_capacity_limit and attendee_count >= max_attendees,
    }
