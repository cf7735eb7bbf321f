"""
auth/errors.py -- Exception taxonomy for the authentication domain.

Each class carries the HTTP status it maps to and a static, non-leaking
message. The API layer renders any AuthError as
{"success": false, "message": exc.message} with exc.status_code; nothing
else about the failure reaches the client.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from typing import Optional


class AuthError(Exception):
    """Base class for domain errors mapped to HTTP responses."""

    status_code: int = 400

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(AuthError):
    """Missing or malformed request fields (400)."""

    status_code = 400


class AuthenticationError(AuthError):
    """Bad credentials or bad bearer token (401)."""

    status_code = 401


class ConflictError(AuthError):
    """Concurrent session (409) or duplicate account (raised with 400)."""

    status_code = 409


class RateLimitError(AuthError):
    """Failed-attempt lockout (429)."""

    status_code = 429


class NotFoundError(AuthError):
    """Lookup miss. Collapsed into AuthenticationError/ValidationError on
    login, verify and reset paths; never surfaced there as a 404."""

    status_code = 404


class ServerError(AuthError):
    """Unexpected store or notifier failure (500). The message is generic."""

    status_code = 500

    def __init__(self, message: str = "Server error", **kwargs) -> None:
        super().__init__(message, **kwargs)


class NotificationError(ServerError):
    """The notifier reported a delivery failure."""
