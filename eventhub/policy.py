"""Authorization rules for mutating events."""

from __future__ import annotations

from .errors import AuthorizationError
from .models import ROLE_ADMIN, ROLE_USER

# Accounts created before roles existed used the literal username "admin".
LEGACY_ADMIN_USERNAME = "admin"


def can_mutate(requester_id: int | None, requester_role: str | None, owner_id: int | None) -> bool:
    """Return True when the requester may edit or delete the resource."""
    if requester_role == ROLE_ADMIN:
        return True
    if requester_id is None or owner_id is None:
        return False
    return requester_id == owner_id


def resolve_role(username: str | None, stored_role: str | None) -> str:
    """Return the effective role for a stored account.

    The stored role is authoritative; the only exception is the legacy rule
    that an account named ``admin`` is treated as an administrator.
    """
    if stored_role == ROLE_ADMIN:
        return ROLE_ADMIN
    if (username or "").strip().lower() == LEGACY_ADMIN_USERNAME:
        return ROLE_ADMIN
    return ROLE_USER


def require_mutation_rights(
    requester_id: int | None,
    requester_role: str | None,
    owner_id: int | None,
    *,
    action: str = "modify",
) -> None:
    """Raise ``AuthorizationError`` unless ``can_mutate`` allows the action."""
    if not can_mutate(requester_id, requester_role, owner_id):
        raise AuthorizationError(f"You do not have permission to {action} this event")
