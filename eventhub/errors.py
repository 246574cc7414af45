"""Domain errors and the HTTP status each one maps to."""

from __future__ import annotations


class EventHubError(Exception):
    """Base class for failures that are safe to report to clients."""

    status_code = 500
    default_detail = "Internal server error"

    def __init__(self, detail: str | list[str] | None = None):
        self.detail = detail if detail is not None else self.default_detail
        super().__init__(
            "; ".join(self.detail) if isinstance(self.detail, list) else self.detail
        )


class ValidationError(EventHubError):
    """Malformed or missing input."""

    status_code = 400
    default_detail = "Invalid request"


class AuthenticationError(EventHubError):
    """Credentials did not match."""

    status_code = 401
    default_detail = "Invalid password"


class AuthorizationError(EventHubError):
    """Requester is known but not permitted to perform the action."""

    status_code = 403
    default_detail = "You do not have permission to perform this action"


class NotFoundError(EventHubError):
    status_code = 404
    default_detail = "Not found"


class ConflictError(EventHubError):
    """A unique key already exists."""

    status_code = 409
    default_detail = "Resource already exists"


class InternalError(EventHubError):
    status_code = 500


class UnavailableError(EventHubError):
    """A dependency or required configuration is missing."""

    status_code = 503
    default_detail = "Service unavailable"
