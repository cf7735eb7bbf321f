"""
auth/ledger.py -- Append-only record of login attempts.

LoginAttempt rows are facts: inserted once, never updated, deleted only by
purge_expired() after the retention window. They exist to answer one
question -- "how many failed attempts for this email / this IP in the last
N seconds?" -- which is recomputed per request from the rows themselves.

Counts take an explicit `since` bound, so rows older than the window are
ignored even if the reaper has not removed them yet.

The login gate in auth/policy.py is the only writer.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.engine import Engine

from auth.db import Clock, login_attempts, to_epoch, utcnow
from auth.models import LoginAttempt


class AttemptLedger:
    def __init__(self, engine: Engine, retention_seconds: int = 15 * 60, clock: Clock | None = None) -> None:
        self.engine = engine
        self.retention = timedelta(seconds=retention_seconds)
        self._clock = clock or utcnow

    def record(self, email: str, ip: str, successful: bool) -> LoginAttempt:
        attempt = LoginAttempt(email=email.strip().lower(), ip=ip, successful=successful, timestamp=self._clock())
        with self.engine.begin() as conn:
            conn.execute(
                login_attempts.insert().values(
                    email=attempt.email,
                    ip=attempt.ip,
                    successful=attempt.successful,
                    timestamp=to_epoch(attempt.timestamp),
                )
            )
        return attempt

    def count_failed_for_email(self, email: str, since: datetime) -> int:
        return self._count_failed(login_attempts.c.email == email.strip().lower(), since)

    def count_failed_for_ip(self, ip: str, since: datetime) -> int:
        return self._count_failed(login_attempts.c.ip == ip, since)

    def _count_failed(self, predicate, since: datetime) -> int:
        query = (
            select(func.count())
            .select_from(login_attempts)
            .where(predicate & (login_attempts.c.successful.is_(False)) & (login_attempts.c.timestamp >= to_epoch(since)))
        )
        with self.engine.connect() as conn:
            return conn.execute(query).scalar() or 0

    def purge_expired(self, now: datetime | None = None) -> int:
        """Delete attempts older than the retention window. Returns rows removed."""
        cutoff = (now or self._clock()) - self.retention
        with self.engine.begin() as conn:
            result = conn.execute(login_attempts.delete().where(login_attempts.c.timestamp < to_epoch(cutoff)))
        return result.rowcount
