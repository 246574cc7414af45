"""Serializable login session kept by browser clients."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from .models import ROLE_USER, VALID_ROLES, User
from .policy import resolve_role


class SessionRecord(BaseModel):
    """The fields a client persists between page loads."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    is_logged_in: bool = False
    current_user: str | None = None
    current_user_id: int | None = Field(None, ge=1)
    user_role: str | None = None

    @classmethod
    def anonymous(cls) -> "SessionRecord":
        return cls()

    @classmethod
    def from_user(cls, user: User) -> "SessionRecord":
        return cls(
            is_logged_in=True,
            current_user=user.username,
            current_user_id=user.id,
            user_role=resolve_role(user.username, user.role),
        )

    @property
    def can_mutate(self) -> bool:
        """Logged-in sessions need a numeric user id to call the API."""
        return self.is_logged_in and self.current_user_id is not None

    def dumps(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def loads(cls, raw: str | bytes | None) -> "SessionRecord":
        """Parse a stored session, falling back to anonymous on bad input."""
        if not raw:
            return cls.anonymous()
        try:
            record = cls.model_validate_json(raw)
        except PydanticValidationError:
            return cls.anonymous()
        return record.normalized()

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SessionRecord":
        if not isinstance(data, dict):
            return cls.anonymous()
        try:
            record = cls.model_validate(data)
        except PydanticValidationError:
            return cls.anonymous()
        return record.normalized()

    def normalized(self) -> "SessionRecord":
        # Legacy sessions without a numeric user id cannot perform mutations.
        if not self.is_logged_in or self.current_user_id is None:
            return self.anonymous()
        role = self.user_role if self.user_role in VALID_ROLES else ROLE_USER
        return self.model_copy(
            update={"user_role": resolve_role(self.current_user, role)}
        )
