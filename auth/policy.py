"""
auth/policy.py -- Adaptive admission control for the login route.

The fixed-window limiters (per-IP request budgets) live in api/limiter.py.
This module is the second layer, specific to login:

  1. email must be present (400, nothing else is checked);
  2. failed attempts in the trailing window, per email then per IP (429);
  3. an unexpired active session for that email's user (409).

Lockouts are checked before the session conflict, so a locked-out email gets
429 even while a session exists. The conflict check runs before any password
check: a second login with a wrong password is still 409, not 401.

LoginGate is the single writer of LoginAttempt rows. attempt() records
exactly one row for every request that got past check(): successful when the
login callable returns, failed when it raises an AuthError (missing password,
unknown email, unverified account, wrong password). Requests rejected by
check() itself are not recorded.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import timedelta

from auth.db import Clock, utcnow
from auth.errors import AuthError, ConflictError, RateLimitError, ValidationError
from auth.ledger import AttemptLedger
from auth.notifier import redact_email
from auth.service import ERR_EMAIL_REQUIRED, AuthResult, normalize_email
from auth.sessions import SessionRegistry
from auth.store import UserStore
from core.config import Settings

logger = logging.getLogger("authflow.auth.policy")

ERR_EMAIL_LOCKED = "Too many failed login attempts for this email. Please try again in 15 minutes."
ERR_IP_LOCKED = "Too many failed login attempts from this IP. Please try again in 15 minutes."
ERR_ALREADY_LOGGED_IN = "User is already logged in. Please logout first or wait for session to expire."


class LoginGate:
    def __init__(
        self,
        settings: Settings,
        users: UserStore,
        ledger: AttemptLedger,
        sessions: SessionRegistry,
        clock: Clock | None = None,
    ) -> None:
        self.window = timedelta(seconds=settings.login_attempt_window_seconds)
        self.max_per_email = settings.max_failed_attempts_per_email
        self.max_per_ip = settings.max_failed_attempts_per_ip
        self.users = users
        self.ledger = ledger
        self.sessions = sessions
        self._clock = clock or utcnow

    def check(self, email: str | None, ip: str) -> str:
        """Admit or reject a login request. Returns the normalized email."""
        if not email or not email.strip():
            raise ValidationError(ERR_EMAIL_REQUIRED)
        email = normalize_email(email)

        since = self._clock() - self.window
        if self.ledger.count_failed_for_email(email, since) >= self.max_per_email:
            logger.warning("Login locked for %s: too many failed attempts", redact_email(email))
            raise RateLimitError(ERR_EMAIL_LOCKED)
        if self.ledger.count_failed_for_ip(ip, since) >= self.max_per_ip:
            logger.warning("Login locked for ip %s: too many failed attempts", ip)
            raise RateLimitError(ERR_IP_LOCKED)

        user = self.users.get_by_email(email)
        if user is not None and self.sessions.get(user.id) is not None:
            raise ConflictError(ERR_ALREADY_LOGGED_IN)
        return email

    def attempt(
        self,
        email: str | None,
        password: str | None,
        ip: str,
        login: Callable[[str, str | None], AuthResult],
    ) -> AuthResult:
        """Run check(), then `login`, recording the outcome in the ledger."""
        email = self.check(email, ip)
        try:
            result = login(email, password)
        except AuthError:
            self.ledger.record(email, ip, successful=False)
            raise
        self.ledger.record(email, ip, successful=True)
        return result
