"""Development helpers for populating fake users, events, and RSVPs."""

from __future__ import annotations

import random
from datetime import date, time, timedelta

from faker import Faker
from sqlalchemy.orm import Session

from .crud import create_event, create_user, get_user_by_username, upsert_registration
from .database import get_session
from .models import Event, User
from .policy import LEGACY_ADMIN_USERNAME
from .storage import init_db

SEED_PASSWORD = "password123"

_categories = [
    "Technology",
    "Sports",
    "Music",
    "Art",
    "Business",
]
_event_types = [
    "Meetup",
    "Workshop",
    "Jam Session",
    "Cleanup Day",
    "Book Club",
    "Potluck",
    "Tournament",
    "Open Mic",
]
_rsvp_statuses = ["going", "going", "going", "maybe", "maybe", "notgoing"]


def seed_fake_data(
    *,
    user_count: int = 8,
    event_count: int = 6,
    max_rsvps_per_event: int = 5,
) -> dict[str, int]:
    """Populate the database with synthetic users, events, and RSVPs."""
    if user_count < 1:
        raise ValueError("user_count must be >= 1")
    if event_count < 0:
        raise ValueError("event_count must be >= 0")
    if max_rsvps_per_event < 0:
        raise ValueError("max_rsvps_per_event must be >= 0")

    init_db()
    fake = Faker()
    stats = {"users": 0, "events": 0, "registrations": 0}

    with get_session() as session:
        users = [_create_user(session, fake) for _ in range(user_count)]
        stats["users"] = len(users)
        for _ in range(event_count):
            event = _create_event(session, fake, creator=random.choice(users))
            stats["events"] += 1
            stats["registrations"] += _create_registrations(
                session, event, users, max_rsvps_per_event
            )

    return stats


def _create_user(session: Session, fake: Faker) -> User:
    for _ in range(20):
        username = fake.user_name()
        if username.lower() == LEGACY_ADMIN_USERNAME or get_user_by_username(
            session, username
        ):
            continue
        return create_user(
            session,
            username=username,
            email=f"{username}@{fake.free_email_domain()}",
            password=SEED_PASSWORD,
        )
    raise RuntimeError("Failed to create a unique username")


def _create_event(session: Session, fake: Faker, *, creator: User) -> Event:
    max_attendees = random.choice([None, None, 5, 10, 25])
    return create_event(
        session,
        title=f"{fake.city()} {random.choice(_event_types)}",
        description=fake.paragraph(nb_sentences=3),
        location=fake.address().replace("\n", ", "),
        event_date=_random_event_date(),
        event_time=time(hour=random.randint(8, 21), minute=random.choice([0, 15, 30, 45])),
        creator_id=creator.id,
        category_name=random.choice(_categories),
        max_attendees=max_attendees,
    )


def _random_event_date() -> date:
    return date.today() + timedelta(days=random.randint(-7, 45))


def _create_registrations(
    session: Session, event: Event, users: list[User], max_rsvps: int
) -> int:
    if max_rsvps <= 0:
        return 0
    attendees = random.sample(users, k=min(random.randint(0, max_rsvps), len(users)))
    for user in attendees:
        upsert_registration(
            session,
            user_id=user.id,
            event_id=event.id,
            status=random.choice(_rsvp_statuses),
        )
    return len(attendees)
