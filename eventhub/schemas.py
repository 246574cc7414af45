"""Request models and validation for the JSON API."""

from __future__ import annotations

import re
from datetime import date, time
from typing import Any, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from .errors import ValidationError

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d(:[0-5]\d)?$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 6

Role = Literal["user", "admin"]
RegistrationStatus = Literal["going", "maybe", "notgoing"]

ModelT = TypeVar("ModelT", bound=BaseModel)


class RequestModel(BaseModel):
    """Base for request bodies; accepts camelCase or snake_case keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )


def _parse_event_date(value: Any) -> Any:
    if value is None or isinstance(value, date):
        return value
    if not isinstance(value, str) or not DATE_PATTERN.match(value):
        raise ValueError("Event date must use the YYYY-MM-DD format")
    return date.fromisoformat(value)


def _parse_event_time(value: Any) -> Any:
    if value is None or isinstance(value, time):
        return value
    if not isinstance(value, str) or not TIME_PATTERN.match(value):
        raise ValueError("Event time must use the HH:MM format")
    return time.fromisoformat(value)


def _lower(value: Any) -> Any:
    return value.strip().lower() if isinstance(value, str) else value


class SignupRequest(RequestModel):
    username: str = Field(min_length=1, max_length=50)
    email: str = Field(max_length=255)
    password: str = Field(min_length=MIN_PASSWORD_LENGTH, max_length=128)
    role: Role = "user"
    admin_invite_key: str | None = None

    @field_validator("email")
    @classmethod
    def check_email(cls, value: str) -> str:
        if not EMAIL_PATTERN.match(value):
            raise ValueError("Invalid email address")
        return value.lower()

    normalize_role = field_validator("role", mode="before")(_lower)


class SigninRequest(RequestModel):
    username: str = Field(min_length=1, description="Username or email")
    password: str = Field(min_length=1)


class RecoverPasswordRequest(RequestModel):
    username: str = Field(min_length=1)
    email: str = Field(min_length=1, max_length=255)
    new_password: str = Field(min_length=MIN_PASSWORD_LENGTH, max_length=128)

    @field_validator("email")
    @classmethod
    def check_email(cls, value: str) -> str:
        if not EMAIL_PATTERN.match(value):
            raise ValueError("Invalid email address")
        return value.lower()


class EventFields(RequestModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = Field("", max_length=5000)
    location: str = Field(min_length=1, max_length=255)
    event_date: date
    event_time: time
    category: str | None = Field(None, max_length=100)
    max_attendees: int | None = Field(None, ge=1)

    parse_date = field_validator("event_date", mode="before")(_parse_event_date)
    parse_time = field_validator("event_time", mode="before")(_parse_event_time)


class EventCreateRequest(EventFields):
    creator_id: int = Field(ge=1)


class EventUpdateRequest(RequestModel):
    id: int = Field(ge=1)
    creator_id: int = Field(ge=1, description="The user attempting the edit")
    requester_role: Role | None = None
    title: str | None = Field(None, min_length=1, max_length=200)
    description: str | None = Field(None, max_length=5000)
    location: str | None = Field(None, min_length=1, max_length=255)
    event_date: date | None = None
    event_time: time | None = None
    category: str | None = Field(None, max_length=100)
    max_attendees: int | None = Field(None, ge=1)

    parse_date = field_validator("event_date", mode="before")(_parse_event_date)
    parse_time = field_validator("event_time", mode="before")(_parse_event_time)
    normalize_role = field_validator("requester_role", mode="before")(_lower)


class EventDeleteRequest(RequestModel):
    id: int = Field(ge=1)
    creator_id: int = Field(ge=1, description="The user attempting the delete")
    requester_role: Role | None = None

    normalize_role = field_validator("requester_role", mode="before")(_lower)


class RegistrationRequest(RequestModel):
    user_id: int = Field(ge=1)
    event_id: int = Field(ge=1)
    status: RegistrationStatus = "going"

    normalize_status = field_validator("status", mode="before")(_lower)


class UnregisterRequest(RequestModel):
    user_id: int = Field(ge=1)
    event_id: int = Field(ge=1)


def format_errors(errors: list[dict[str, Any]]) -> list[str]:
    """Turn pydantic error dicts into short human-readable messages."""
    messages: list[str] = []
    for error in errors:
        location = [str(part) for part in error.get("loc", ()) if part != "body"]
        message = str(error.get("msg", "Invalid value"))
        message = message.removeprefix("Value error, ")
        if location:
            messages.append(f"{'.'.join(location)}: {message}")
        else:
            messages.append(message)
    return messages


def validate(model: type[ModelT], data: Any) -> ModelT:
    """Validate ``data`` against ``model`` or raise ``ValidationError``."""
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(format_errors(exc.errors())) from exc
