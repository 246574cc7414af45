"""Password hashing helpers."""

from __future__ import annotations

import secrets

from werkzeug.security import check_password_hash, generate_password_hash


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    return check_password_hash(password_hash, password)


def invite_key_matches(provided: str | None, expected: str) -> bool:
    """Compare an admin invite key in constant time."""
    return secrets.compare_digest(
        (provided or "").strip().encode("utf-8"), expected.strip().encode("utf-8")
    )
