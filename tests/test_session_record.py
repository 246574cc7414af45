from __future__ import annotations

import json

from eventhub.session_record import SessionRecord


def test_from_user_round_trips_through_storage(make_user):
    user = make_user("grace")
    record = SessionRecord.from_user(user)

    stored = json.loads(record.dumps())
    assert stored == {
        "isLoggedIn": True,
        "currentUser": "grace",
        "currentUserId": user.id,
        "userRole": "user",
    }
    assert SessionRecord.loads(record.dumps()) == record
    assert record.can_mutate is True


def test_legacy_session_without_user_id_is_anonymous():
    raw = json.dumps({"isLoggedIn": True, "currentUser": "grace", "userRole": "user"})
    record = SessionRecord.loads(raw)
    assert record == SessionRecord.anonymous()
    assert record.can_mutate is False


def test_corrupt_or_missing_session_is_anonymous():
    assert SessionRecord.loads(None) == SessionRecord.anonymous()
    assert SessionRecord.loads("{not json") == SessionRecord.anonymous()
    assert SessionRecord.from_dict("nope") == SessionRecord.anonymous()


def test_unknown_role_falls_back_to_user():
    record = SessionRecord.from_dict(
        {"isLoggedIn": True, "currentUser": "mallory", "currentUserId": 3, "userRole": "root"}
    )
    assert record.user_role == "user"


def test_legacy_admin_username_is_admin():
    record = SessionRecord.from_dict(
        {"isLoggedIn": True, "currentUser": "admin", "currentUserId": 1, "userRole": "user"}
    )
    assert record.user_role == "admin"
