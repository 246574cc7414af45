from __future__ import annotations

import dataclasses
from datetime import date, time

import pytest
from sqlalchemy import func, select

from eventhub import config, crud
from eventhub.crud import (
    attendance_summary,
    authenticate,
    check_admin_invite,
    create_user,
    delete_event,
    get_registration,
    list_events,
    resolve_category_id,
    reset_password,
    update_event,
    upsert_registration,
    withdraw_registration,
)
from eventhub.errors import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    NotFoundError,
    UnavailableError,
    ValidationError,
)
from eventhub.models import Category, Event, Registration


def _registration_count(session, *, user_id: int, event_id: int) -> int:
    return session.scalar(
        select(func.count(Registration.id)).where(
            Registration.user_id == user_id, Registration.event_id == event_id
        )
    )


# -------- Users --------


def test_create_user_rejects_duplicate_email_case_insensitively(session, make_user):
    make_user("ada")
    with pytest.raises(ConflictError):
        create_user(
            session, username="ada2", email="ADA@example.com", password="secret123"
        )


def test_create_user_rejects_duplicate_username(session, make_user):
    make_user("grace")
    with pytest.raises(ConflictError):
        create_user(
            session, username="Grace", email="other@example.com", password="secret123"
        )


def test_authenticate_by_username_or_email(session, make_user):
    user = make_user("linus")
    assert authenticate(session, identifier="linus", password="secret123").id == user.id
    assert (
        authenticate(session, identifier="LINUS@example.com", password="secret123").id
        == user.id
    )


def test_authenticate_distinguishes_missing_account_and_bad_password(session, make_user):
    make_user("ken")
    with pytest.raises(NotFoundError):
        authenticate(session, identifier="nobody", password="secret123")
    with pytest.raises(AuthenticationError):
        authenticate(session, identifier="ken", password="wrong-password")


def test_reset_password_requires_matching_username_and_email(session, make_user):
    make_user("barbara")
    with pytest.raises(NotFoundError):
        reset_password(
            session,
            username="barbara",
            email="someone-else@example.com",
            new_password="newpass123",
        )
    reset_password(
        session,
        username="barbara",
        email="Barbara@Example.com",
        new_password="newpass123",
    )
    session.commit()
    assert authenticate(session, identifier="barbara", password="newpass123")


def test_check_admin_invite_gate():
    unconfigured = dataclasses.replace(config.settings, admin_invite_key="  ")
    configured = dataclasses.replace(config.settings, admin_invite_key="letmein")

    check_admin_invite("user", None, settings=unconfigured)
    with pytest.raises(UnavailableError):
        check_admin_invite("admin", "anything", settings=unconfigured)
    with pytest.raises(AuthorizationError):
        check_admin_invite("admin", "wrong", settings=configured)
    check_admin_invite("admin", "letmein", settings=configured)


@pytest.mark.parametrize("username", ["admin", "Admin", "  ADMIN "])
def test_create_user_reserves_legacy_admin_name_for_admins(session, username):
    with pytest.raises(ConflictError, match="reserved"):
        create_user(
            session, username=username, email="x@example.com", password="secret123"
        )

    user = create_user(
        session,
        username=username,
        email="x@example.com",
        password="secret123",
        role="admin",
    )
    assert user.role == "admin"


# -------- Categories --------


def test_resolve_category_is_case_insensitive(session):
    first = resolve_category_id(session, "Music")
    second = resolve_category_id(session, "music")
    third = resolve_category_id(session, "  MUSIC ")
    session.commit()
    assert first == second == third
    assert session.scalar(select(func.count(Category.id))) == 1
    assert session.get(Category, first).name == "Music"


def test_resolve_category_is_undone_by_rollback(session):
    resolve_category_id(session, "Brand New")
    session.rollback()

    assert session.scalars(select(Category)).all() == []


def test_portable_upsert_is_undone_by_rollback(
    session, make_user, make_event, monkeypatch
):
    monkeypatch.setattr(crud, "_upsert_insert", lambda dialect_name: None)
    user = make_user("attendee")
    event = make_event(make_user("owner"))

    upsert_registration(session, user_id=user.id, event_id=event.id, status="going")
    session.rollback()

    assert get_registration(session, user_id=user.id, event_id=event.id) is None


def test_resolve_category_blank_means_no_category(session):
    assert resolve_category_id(session, None) is None
    assert resolve_category_id(session, "   ") is None


def test_resolve_category_recovers_from_concurrent_create(session, monkeypatch):
    existing = Category(name="Art", name_key="art")
    session.add(existing)
    session.commit()

    real_lookup = crud.get_category_by_name
    calls = {"count": 0}

    def stale_lookup(db, name):
        calls["count"] += 1
        if calls["count"] == 1:
            # Simulate another request inserting the row after our lookup.
            return None
        return real_lookup(db, name)

    monkeypatch.setattr(crud, "get_category_by_name", stale_lookup)

    assert resolve_category_id(session, "ART") == existing.id
    session.commit()
    assert session.scalar(select(func.count(Category.id))) == 1


# -------- Events --------


def test_create_event_requires_existing_creator(session):
    with pytest.raises(NotFoundError):
        crud.create_event(
            session,
            title="Ghost event",
            description="",
            location="Nowhere",
            event_date=date(2030, 1, 1),
            event_time=time(12, 0),
            creator_id=12345,
        )


def test_create_event_resolves_category(session, make_user, make_event):
    owner = make_user("owner")
    event = make_event(owner, category="Sports")
    other = make_event(owner, title="Pickup game", category="sports")
    assert event.category_id is not None
    assert event.category_id == other.category_id


def test_owner_can_update_event(session, make_user, make_event):
    owner = make_user("owner")
    event = make_event(owner, category="Tech")
    updated = update_event(
        session,
        event_id=event.id,
        requester_id=owner.id,
        changes={"title": "Repair Cafe", "max_attendees": 10, "category": ""},
    )
    session.commit()
    assert updated.title == "Repair Cafe"
    assert updated.max_attendees == 10
    assert updated.category_id is None
    assert updated.location == "Riverside Park"


def test_non_owner_cannot_update_event(session, make_user, make_event):
    owner = make_user("owner")
    intruder = make_user("intruder")
    event = make_event(owner)
    with pytest.raises(AuthorizationError):
        update_event(
            session,
            event_id=event.id,
            requester_id=intruder.id,
            changes={"title": "Hijacked"},
        )
    session.rollback()
    assert session.get(Event, event.id).title == "Community Cleanup"


def test_unknown_requester_is_not_authorized(session, make_user, make_event):
    event = make_event(make_user("owner"))
    with pytest.raises(AuthorizationError):
        delete_event(session, event_id=event.id, requester_id=9999)


def test_missing_event_is_not_found_before_authorization(session, make_user):
    intruder = make_user("intruder")
    with pytest.raises(NotFoundError):
        update_event(session, event_id=4242, requester_id=intruder.id, changes={})
    with pytest.raises(NotFoundError):
        delete_event(session, event_id=4242, requester_id=intruder.id)


def test_admin_can_delete_any_event_and_registrations_cascade(
    session, make_user, make_event
):
    owner = make_user("owner")
    admin = make_user("moderator", role="admin")
    event = make_event(owner)
    upsert_registration(session, user_id=owner.id, event_id=event.id, status="going")
    session.commit()

    delete_event(session, event_id=event.id, requester_id=admin.id)
    session.commit()

    assert session.get(Event, event.id) is None
    assert session.scalar(select(func.count(Registration.id))) == 0


def test_legacy_admin_username_can_delete_any_event(
    session, make_user, make_legacy_admin, make_event
):
    owner = make_user("owner")
    legacy = make_legacy_admin()
    event = make_event(owner)
    delete_event(session, event_id=event.id, requester_id=legacy.id)
    session.commit()
    assert session.get(Event, event.id) is None


def test_list_events_filters(session, make_user, make_event):
    owner = make_user("owner")
    make_event(owner, title="Jazz in the Park", category="Music")
    make_event(owner, title="Chess Club", category="Games", event_date=date(2030, 6, 1))

    assert [e.title for e in list_events(session, search="jazz")] == ["Jazz in the Park"]
    assert [e.title for e in list_events(session, category_name="GAMES")] == [
        "Chess Club"
    ]
    assert [e.title for e in list_events(session, event_date=date(2030, 6, 1))] == [
        "Chess Club"
    ]
    assert len(list_events(session)) == 2


# -------- Registrations --------


def test_upsert_registration_is_idempotent(session, make_user, make_event):
    user = make_user("attendee")
    event = make_event(make_user("owner"))

    upsert_registration(session, user_id=user.id, event_id=event.id, status="going")
    upsert_registration(session, user_id=user.id, event_id=event.id, status="going")
    session.commit()

    assert _registration_count(session, user_id=user.id, event_id=event.id) == 1
    registration = get_registration(session, user_id=user.id, event_id=event.id)
    assert registration.status == "going"


def test_upsert_registration_overwrites_status_and_keeps_registration_time(
    session, make_user, make_event
):
    user = make_user("attendee")
    event = make_event(make_user("owner"))

    first = upsert_registration(
        session, user_id=user.id, event_id=event.id, status="going"
    )
    session.commit()
    registered_at = first.registered_at
    first_id = first.id

    second = upsert_registration(
        session, user_id=user.id, event_id=event.id, status="maybe"
    )
    session.commit()

    assert _registration_count(session, user_id=user.id, event_id=event.id) == 1
    assert second.id == first_id
    assert second.status == "maybe"
    assert second.registered_at == registered_at
    assert second.updated_at >= registered_at


def test_upsert_registration_requires_user_and_event(session, make_user, make_event):
    user = make_user("attendee")
    event = make_event(make_user("owner"))
    with pytest.raises(NotFoundError, match="User not found"):
        upsert_registration(session, user_id=999, event_id=event.id, status="going")
    with pytest.raises(NotFoundError, match="Event not found"):
        upsert_registration(session, user_id=user.id, event_id=999, status="going")


def test_upsert_registration_rejects_unknown_status(session, make_user, make_event):
    user = make_user("attendee")
    event = make_event(make_user("owner"))
    with pytest.raises(ValidationError):
        upsert_registration(session, user_id=user.id, event_id=event.id, status="yes")


def test_withdraw_twice_raises_not_found(session, make_user, make_event):
    user = make_user("attendee")
    event = make_event(make_user("owner"))
    upsert_registration(session, user_id=user.id, event_id=event.id, status="maybe")
    session.commit()

    withdraw_registration(session, user_id=user.id, event_id=event.id)
    session.commit()
    assert get_registration(session, user_id=user.id, event_id=event.id) is None

    with pytest.raises(NotFoundError):
        withdraw_registration(session, user_id=user.id, event_id=event.id)


def test_portable_upsert_path(session, make_user, make_event, monkeypatch):
    monkeypatch.setattr(crud, "_upsert_insert", lambda dialect_name: None)
    user = make_user("attendee")
    event = make_event(make_user("owner"))

    upsert_registration(session, user_id=user.id, event_id=event.id, status="going")
    session.commit()
    updated = upsert_registration(
        session, user_id=user.id, event_id=event.id, status="notgoing"
    )
    session.commit()

    assert updated.status == "notgoing"
    assert _registration_count(session, user_id=user.id, event_id=event.id) == 1


# -------- Attendance summary --------


def test_attendance_summary_counts_everyone_except_declines(
    session, make_user, make_event
):
    event = make_event(make_user("owner"), max_attendees=2)
    statuses = ["going", "going", "maybe", "notgoing"]
    for index, status in enumerate(statuses):
        user = make_user(f"guest{index}")
        upsert_registration(session, user_id=user.id, event_id=event.id, status=status)
    session.commit()

    summary = attendance_summary(crud.list_attendees(session, event.id), 2)
    assert summary["going"] == 2
    assert summary["maybe"] == 1
    assert summary["notgoing"] == 1
    assert summary["attendeeCount"] == 3
    assert summary["hasCapacityLimit"] is True
    assert summary["spotsLeft"] == 0
    assert summary["isFull"] is True


def test_attendance_summary_without_capacity():
    summary = attendance_summary([], None)
    assert summary["hasCapacityLimit"] is False
    assert summary["spotsLeft"] is None
    assert summary["isFull"] is False
