"""
auth/sessions.py -- Registry of the single active session per user.

An ActiveSession row marks a user as logged in. It backs the login gate's
"already logged in" conflict check and nothing else: the bearer guard never
consults it, so deleting a row does not revoke the token stored in it.

Expiry is lazy. get() treats rows older than the TTL as absent; the reaper
calls purge_expired() to physically remove them.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy.engine import Engine

from auth.db import Clock, active_sessions, from_epoch, to_epoch, utcnow
from auth.models import ActiveSession


class SessionRegistry:
    def __init__(self, engine: Engine, ttl_seconds: int = 24 * 60 * 60, clock: Clock | None = None) -> None:
        self.engine = engine
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock or utcnow

    def replace(self, user_id: int, token: str) -> ActiveSession:
        """Make `token` the user's only session. Last login wins.

        Delete and insert run in one transaction, so the UNIQUE(user_id)
        constraint never sees two rows for the same user.
        """
        session = ActiveSession(user_id=user_id, token=token, created_at=self._clock())
        with self.engine.begin() as conn:
            conn.execute(active_sessions.delete().where(active_sessions.c.user_id == user_id))
            conn.execute(
                active_sessions.insert().values(
                    user_id=user_id,
                    token=token,
                    created_at=to_epoch(session.created_at),
                )
            )
        return session

    def get(self, user_id: int) -> ActiveSession | None:
        """Return the user's unexpired session, or None."""
        cutoff = self._clock() - self.ttl
        with self.engine.connect() as conn:
            row = conn.execute(
                active_sessions.select().where(
                    (active_sessions.c.user_id == user_id) & (active_sessions.c.created_at > to_epoch(cutoff))
                )
            ).fetchone()
        if row is None:
            return None
        return ActiveSession(user_id=row.user_id, token=row.token, created_at=from_epoch(row.created_at))

    def remove(self, user_id: int) -> bool:
        """Delete the user's session. Removing a missing session is not an error."""
        with self.engine.begin() as conn:
            result = conn.execute(active_sessions.delete().where(active_sessions.c.user_id == user_id))
        return result.rowcount > 0

    def purge_expired(self, now: datetime | None = None) -> int:
        cutoff = (now or self._clock()) - self.ttl
        with self.engine.begin() as conn:
            result = conn.execute(active_sessions.delete().where(active_sessions.c.created_at <= to_epoch(cutoff)))
        return result.rowcount
