"""
auth/dependencies.py -- FastAPI Depends() helper for bearer authentication.

get_current_user() is the guard for every protected route:

  1. Read "Authorization: Bearer <jwt>". Missing header, malformed token,
     bad signature and expired token all produce the same 401 message, so an
     attacker learns nothing from probing.
  2. Load the embedded user id without the password hash.
     Unknown user -> 401 "user not found"; unverified -> 401 "verify first".

Known gap, kept deliberately: the guard does NOT consult the SessionRegistry.
Logout and password reset delete the presence record, but a token issued
before that stays usable until its own expiry.

Layer rule: auth/dependencies.py may import from fastapi because this module
is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.errors import AuthenticationError
from auth.models import User
from auth.service import ERR_VERIFY_FIRST
from auth.store import UserStore
from auth.tokens import decode_access_token
from core.config import Settings

ERR_NO_VALID_TOKEN = "Not authorized, no valid token provided"
ERR_USER_NOT_FOUND = "Not authorized, user not found"


def authenticate(token: str | None, user_store: UserStore, settings: Settings) -> User:
    """Resolve a raw bearer token to a verified User or raise AuthenticationError."""
    payload = decode_access_token(token, settings.secret_key) if token else None
    if payload is None:
        raise AuthenticationError(ERR_NO_VALID_TOKEN)
    user = user_store.get_by_id(payload["user_id"])
    if user is None:
        raise AuthenticationError(ERR_USER_NOT_FOUND)
    if not user.is_verified:
        raise AuthenticationError(ERR_VERIFY_FIRST)
    return user


def get_current_user(request: Request) -> User:
    """Require a valid bearer token. Raises AuthenticationError (401) otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    token: str | None = None
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip() or None
    return authenticate(token, request.app.state.user_store, request.app.state.settings)
