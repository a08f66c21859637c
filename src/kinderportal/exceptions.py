"""Custom exception hierarchy for the KinderPortal package."""

from __future__ import annotations

from typing import Optional


class KinderPortalError(Exception):
    """Base class for all KinderPortal specific errors."""

    status_code = 500
    public_message = "Internal server error"


class Unauthenticated(KinderPortalError):
    """Raised when a session token is missing, invalid or expired.

    The message is always the same so callers cannot tell which check failed.
    """

    status_code = 401
    public_message = "Unauthorized"

    def __init__(self) -> None:
        super().__init__(self.public_message)


class Forbidden(KinderPortalError):
    """Raised when an authenticated caller lacks the role or relation required."""

    status_code = 403
    public_message = "Forbidden"

    def __init__(self) -> None:
        super().__init__(self.public_message)


class NotFound(KinderPortalError):
    """Raised when a referenced record does not exist."""

    status_code = 404

    def __init__(self, label: str) -> None:
        super().__init__(f"{label} not found")
        self.public_message = str(self)


class NoGroupAssigned(KinderPortalError):
    """Raised when a teacher without a group asks for a scoped listing."""

    status_code = 400
    public_message = "No group assigned"

    def __init__(self) -> None:
        super().__init__(self.public_message)


class ValidationError(KinderPortalError):
    """Raised for malformed input; carries the offending field name."""

    status_code = 400

    def __init__(self, message: str, *, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field
        self.public_message = message


class PickupCodeConflict(KinderPortalError):
    """Raised internally when a (child, day) pickup code row already exists."""


__all__ = [
    "KinderPortalError",
    "Unauthenticated",
    "Forbidden",
    "NotFound",
    "NoGroupAssigned",
    "ValidationError",
    "PickupCodeConflict",
]
