"""
auth/service.py -- The authentication state machine.

Per-user states:

    Unregistered --register--> PendingVerification --verify--> Verified
                                   |   ^                         |   ^
                                   +---+ register (rotate)       |   | reset
                                                                 v   |
                                                     PasswordResetRequested

Session status (LoggedIn / LoggedOut) is orthogonal and lives in the
SessionRegistry: login replaces the user's session, logout and password reset
delete it.

AuthService methods return an AuthResult on success and raise auth.errors
exceptions on failure. They never write LoginAttempt rows -- the login gate
in auth/policy.py records every attempt it lets through.

Anti-enumeration rules:
  - login: unknown email and wrong password produce the same 401 message, and
    an unknown email still costs one bcrypt check (timing equalization).
  - verify/reset: unknown and expired tokens produce the same 400 message.
  - forgot-password: the same 200 message whether or not the account exists.
    Exception, kept as the existing contract: an existing *unverified* account
    gets a distinct 400.
  - register: the three branches answer differently by design (201 new,
    200 resent, 400 exists).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import timedelta

from auth.db import Clock, utcnow
from auth.errors import AuthenticationError, ConflictError, NotificationError, ValidationError
from auth.models import User
from auth.notifier import Notifier, NotificationKind, redact_email
from auth.sessions import SessionRegistry
from auth.store import DuplicateEmailError, UserStore
from auth.tokens import (
    MAX_PASSWORD_BYTES,
    check_credentials,
    create_access_token,
    generate_one_time_token,
    generate_placeholder_password,
    hash_password,
)
from core.config import Settings

logger = logging.getLogger("authflow.auth")

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

MSG_REGISTRATION_INITIATED = "Registration initiated, please check your email to complete the process"
MSG_VERIFICATION_RESENT = "Verification email sent again"
MSG_REGISTRATION_COMPLETE = "Registration successful, you can now login"
MSG_RESET_LINK_SENT = "If an account with that email exists, a password reset link has been sent"
MSG_RESET_COMPLETE = "Password reset successful, please login with your new password"
MSG_LOGGED_OUT = "Logged out successfully"

ERR_EMAIL_REQUIRED = "Email is required"
ERR_EMAIL_INVALID = "Please provide a valid email"
ERR_USER_EXISTS = "User already exists"
ERR_TOKEN_AND_PASSWORD = "Token and password are required"
ERR_CREDENTIALS_REQUIRED = "Email and password are required"
ERR_INVALID_TOKEN = "Invalid or expired token"
ERR_INVALID_RESET_TOKEN = "Invalid or expired reset token"
ERR_INVALID_CREDENTIALS = "Invalid credentials"
ERR_VERIFY_FIRST = "Please verify your email first"
ERR_PASSWORD_TOO_LONG = f"Password should be at most {MAX_PASSWORD_BYTES} bytes long"


def normalize_email(email: str) -> str:
    return email.strip().lower()


@dataclass(frozen=True)
class AuthResult:
    status_code: int
    message: str | None = None
    token: str | None = None


class AuthService:
    def __init__(
        self,
        settings: Settings,
        users: UserStore,
        sessions: SessionRegistry,
        notifier: Notifier,
        clock: Clock | None = None,
    ) -> None:
        self.settings = settings
        self.users = users
        self.sessions = sessions
        self.notifier = notifier
        self._clock = clock or utcnow

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, email: str | None) -> AuthResult:
        """Start registration or resend the verification email.

        A concurrent request that inserts the same email first makes create()
        fail on the UNIQUE constraint; that case falls through to the
        "existing unverified user" branch, so one email never maps to two
        accounts. Last token rotation wins.
        """
        if not email or not email.strip():
            raise ValidationError(ERR_EMAIL_REQUIRED)
        email = normalize_email(email)
        if not _EMAIL_RE.match(email):
            raise ValidationError(ERR_EMAIL_INVALID)

        existing = self.users.get_by_email(email)
        if existing is None:
            token, expires = self._registration_token()
            placeholder = hash_password(generate_placeholder_password(), rounds=self.settings.bcrypt_rounds)
            try:
                self.users.create(email, placeholder, token, expires)
            except DuplicateEmailError:
                logger.info("Concurrent registration for %s; rotating existing token", redact_email(email))
                existing = self.users.get_by_email(email)
            else:
                self._notify(NotificationKind.verification, email, token)
                logger.info("Registration initiated for %s", redact_email(email))
                return AuthResult(201, MSG_REGISTRATION_INITIATED)

        if existing is None or existing.is_verified:
            raise ConflictError(ERR_USER_EXISTS, status_code=400)

        token, expires = self._registration_token()
        existing.registration_token = token
        existing.registration_token_expires = expires
        self.users.save(existing)
        self._notify(NotificationKind.verification, email, token)
        logger.info("Verification token rotated for %s", redact_email(email))
        return AuthResult(200, MSG_VERIFICATION_RESENT)

    def verify_registration(self, token: str | None, password: str | None) -> AuthResult:
        self._check_new_password(token, password)
        user = self.users.find_by_registration_token(token, self._clock())
        if user is None:
            raise ValidationError(ERR_INVALID_TOKEN)

        user.set_password(password, rounds=self.settings.bcrypt_rounds)
        user.is_verified = True
        user.clear_registration_token()
        self.users.save(user)
        logger.info("User %d verified", user.id)
        return AuthResult(200, MSG_REGISTRATION_COMPLETE)

    # ------------------------------------------------------------------
    # Login / logout
    # ------------------------------------------------------------------

    def login(self, email: str | None, password: str | None) -> AuthResult:
        """Check credentials, issue a bearer token, replace the active session.

        Admission (lockouts, "already logged in") is the login gate's job and
        has already happened when this runs.
        """
        if not email or not password:
            raise ValidationError(ERR_CREDENTIALS_REQUIRED)

        rounds = self.settings.bcrypt_rounds
        user = self.users.get_by_email(normalize_email(email), include_password=True)
        if user is None:
            check_credentials(None, password, rounds=rounds)
            raise AuthenticationError(ERR_INVALID_CREDENTIALS)
        if not user.is_verified:
            raise AuthenticationError(ERR_VERIFY_FIRST)
        if not check_credentials(user, password, rounds=rounds):
            raise AuthenticationError(ERR_INVALID_CREDENTIALS)

        token = create_access_token(user.id, self.settings.secret_key, self.settings.token_expire_seconds)
        self.sessions.replace(user.id, token)
        logger.info("User %d logged in", user.id)
        return AuthResult(200, token=token)

    def logout(self, user: User) -> AuthResult:
        """Drop the user's presence record. Idempotent."""
        self.sessions.remove(user.id)
        logger.info("User %d logged out", user.id)
        return AuthResult(200, MSG_LOGGED_OUT)

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def forgot_password(self, email: str | None) -> AuthResult:
        """Issue a reset token to a verified account.

        A notifier failure here is logged and the generic message is still
        returned: answering 500 only when the account exists would reveal
        that it exists.
        """
        if not email or not email.strip():
            raise ValidationError(ERR_EMAIL_REQUIRED)
        email = normalize_email(email)

        user = self.users.get_by_email(email)
        if user is None:
            return AuthResult(200, MSG_RESET_LINK_SENT)
        if not user.is_verified:
            raise ValidationError(ERR_VERIFY_FIRST)

        token = generate_one_time_token()
        user.password_reset_token = token
        user.password_reset_expires = self._clock() + timedelta(minutes=self.settings.password_reset_expire_minutes)
        self.users.save(user)
        if not self.notifier.send(NotificationKind.password_reset, email, token):
            logger.error("Password reset email to %s could not be delivered", redact_email(email))
        return AuthResult(200, MSG_RESET_LINK_SENT)

    def reset_password(self, token: str | None, password: str | None) -> AuthResult:
        self._check_new_password(token, password)
        user = self.users.find_by_reset_token(token, self._clock())
        if user is None:
            raise ValidationError(ERR_INVALID_RESET_TOKEN)

        user.set_password(password, rounds=self.settings.bcrypt_rounds)
        user.clear_reset_token()
        self.users.save(user)
        # Forces a fresh login; issued bearer tokens stay valid until expiry.
        self.sessions.remove(user.id)
        logger.info("Password reset for user %d", user.id)
        return AuthResult(200, MSG_RESET_COMPLETE)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _registration_token(self):
        expires = self._clock() + timedelta(minutes=self.settings.registration_token_expire_minutes)
        return generate_one_time_token(), expires

    def _check_new_password(self, token: str | None, password: str | None) -> None:
        """Shared by verify and reset so both paths reject the same inputs the same way."""
        if not token or not password:
            raise ValidationError(ERR_TOKEN_AND_PASSWORD)
        minimum = self.settings.min_password_length
        if len(password) < minimum:
            raise ValidationError(f"Password should be at least {minimum} characters long")
        if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValidationError(ERR_PASSWORD_TOO_LONG)

    def _notify(self, kind: NotificationKind, email: str, token: str) -> None:
        if not self.notifier.send(kind, email, token):
            raise NotificationError()
