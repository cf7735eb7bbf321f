"""
auth/tokens.py -- JWT, password hashing, and one-time token utilities.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       user_id and expiry. Verification returns None on any failure --
       expired, malformed and badly signed tokens are indistinguishable to the
       caller, and the guard turns all of them into the same 401.

  Passwords: bcrypt used directly (no passlib wrapper). Bcrypt's cost factor
       makes brute-force of low-entropy secrets expensive. checkpw compares in
       constant time. _dummy_hash() enables timing equalization in
       check_credentials() so response time does not reveal whether an email
       is registered.

  One-time tokens (registration, password reset): secrets.token_hex(32) gives
       256 bits of entropy. They are looked up by exact match and are useless
       after their expiry or after being consumed.

  SECRET_KEY: passed in explicitly by the caller (from the injected Settings).
       This module never reads configuration itself.

Layer rule: no imports from api/. auth.models is imported for typing only.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

if TYPE_CHECKING:
    from auth.models import User

logger = logging.getLogger("authflow.auth")

_ALGORITHM = "HS256"

# bcrypt only looks at the first 72 bytes of its input; bcrypt>=5 refuses
# longer inputs outright. The service rejects such passwords up front.
MAX_PASSWORD_BYTES = 72

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str, rounds: int = 12) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


@lru_cache(maxsize=8)
def _dummy_hash(rounds: int) -> str:
    # One per cost factor so the dummy check costs the same as a real one.
    return hash_password("authflow_timing_dummy", rounds=rounds)


def check_credentials(user: User | None, password: str, rounds: int = 12) -> bool:
    """Verify a password against a (possibly missing) user with timing equalization.

    Always runs bcrypt whether or not the user exists:
    - Unknown email: bcrypt runs against a dummy hash of the same cost.
    - Known email: bcrypt runs against the real hash.
    """
    if user is None or user.hashed_password is None:
        verify_password(password, _dummy_hash(rounds))
        return False
    return verify_password(password, user.hashed_password)


# ---------------------------------------------------------------------------
# One-time tokens
# ---------------------------------------------------------------------------


def generate_one_time_token() -> str:
    """Return a random 64-hex-char token (256 bits) for emailed links."""
    return secrets.token_hex(32)


def generate_placeholder_password() -> str:
    """Unguessable stand-in password for accounts that have not verified yet."""
    return secrets.token_urlsafe(32)


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(user_id: int, secret_key: str, expire_seconds: int) -> str:
    """Encode a signed JWT embedding the user id with a fixed expiry."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "user_id": user_id,
        "iat": now,
        "exp": now + timedelta(seconds=expire_seconds),
    }
    return jwt.encode(payload, secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str, secret_key: str) -> dict | None:
    """Decode and verify a JWT. Returns the payload dict or None on any failure.

    Returning None (rather than raising) keeps the caller simple: any invalid
    token is treated as unauthenticated.
    """
    try:
        payload = jwt.decode(token, secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if not isinstance(payload.get("user_id"), int):
        return None
    return payload
