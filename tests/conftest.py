"""Shared pytest fixtures for EventHub."""

from __future__ import annotations

import sys
from datetime import date, time
from pathlib import Path

import pytest
from sqlalchemy.orm import scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from eventhub import api, database, storage
from eventhub.crud import create_event, create_user
from eventhub.models import Base, User
from eventhub.security import hash_password


@pytest.fixture(scope="session", autouse=True)
def configure_in_memory_db():
    """Reuse a single in-memory SQLite database for fast, isolated tests."""

    engine = database.build_engine(
        "sqlite+pysqlite:///:memory:",
        poolclass=StaticPool,
    )
    session_factory = scoped_session(
        sessionmaker(
            bind=engine,
            autoflush=False,
            autocommit=False,
            future=True,
            expire_on_commit=False,
        )
    )
    database.engine = engine
    database.SessionLocal = session_factory
    storage.engine = engine
    api.SessionLocal = session_factory
    Base.metadata.create_all(bind=engine)
    yield
    session_factory.remove()


@pytest.fixture(autouse=True)
def clean_database():
    """Reset all tables between tests to guarantee isolation."""

    Base.metadata.drop_all(bind=database.engine)
    Base.metadata.create_all(bind=database.engine)
    yield


@pytest.fixture()
def session():
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def make_user(session):
    """Create and commit a user, returning it."""

    def _make_user(username: str, *, role: str = "user", password: str = "secret123"):
        user = create_user(
            session,
            username=username,
            email=f"{username.lower()}@example.com",
            password=password,
            role=role,
        )
        session.commit()
        return user

    return _make_user


@pytest.fixture()
def make_legacy_admin(session):
    """Insert an account from before roles existed, named 'admin' with role user."""

    def _make_legacy_admin(username: str = "admin"):
        user = User(
            username=username,
            email=f"{username.lower()}@example.com",
            password_hash=hash_password("secret123"),
            role="user",
        )
        session.add(user)
        session.commit()
        return user

    return _make_legacy_admin


@pytest.fixture()
def make_event(session):
    """Create and commit an event owned by ``creator``."""

    def _make_event(
        creator,
        *,
        title: str = "Community Cleanup",
        category: str | None = None,
        max_attendees: int | None = None,
        event_date: date = date(2030, 5, 17),
    ):
        event = create_event(
            session,
            title=title,
            description="Bring gloves",
            location="Riverside Park",
            event_date=event_date,
            event_time=time(10, 30),
            creator_id=creator.id,
            category_name=category,
            max_attendees=max_attendees,
        )
        session.commit()
        return event

    return _make_event
