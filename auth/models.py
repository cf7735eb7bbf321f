"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class. Stores and the auth service do the work; the only
behaviour on an entity is User.set_password(), which replaces the implicit
"hash if dirty" save hook with an explicit, always-hashing mutation.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from auth.tokens import hash_password


@dataclass
class User:
    """A credential holder.

    email is stored trimmed and lower-cased; the store does not normalize on
    read, so callers must normalize before querying.

    hashed_password is None on records loaded without the password column
    (the default for every query except the login lookup).

    registration_token non-null implies is_verified is False. The reset token
    pair is only ever set on verified users.
    """

    email: str
    id: int | None = None
    hashed_password: str | None = None
    is_verified: bool = False
    registration_token: str | None = None
    registration_token_expires: datetime | None = None
    password_reset_token: str | None = None
    password_reset_expires: datetime | None = None
    created_at: datetime | None = None

    def set_password(self, plain: str, rounds: int = 12) -> None:
        """Hash and store a new password. Always re-hashes."""
        self.hashed_password = hash_password(plain, rounds=rounds)

    def clear_registration_token(self) -> None:
        self.registration_token = None
        self.registration_token_expires = None

    def clear_reset_token(self) -> None:
        self.password_reset_token = None
        self.password_reset_expires = None


@dataclass(frozen=True)
class LoginAttempt:
    """An immutable login-attempt fact. Never updated; purged after retention."""

    email: str
    ip: str
    successful: bool
    timestamp: datetime
    id: int | None = None


@dataclass(frozen=True)
class ActiveSession:
    """Presence record for the single logged-in session of a user.

    Used only for the "already logged in" check. Deleting it does not
    invalidate the bearer token it was created for.
    """

    user_id: int
    token: str
    created_at: datetime
