"""
auth/db.py -- Schema and engine factory shared by the auth stores.

One SQLAlchemy Core MetaData holds the three tables (users, login_attempts,
active_sessions). Every store receives the same Engine, so a deployment has
one logical store and one connection pool.

Timestamps are stored as epoch seconds (REAL). Window checks such as
"expires > now" and "timestamp >= now - 15 min" are then plain numeric
comparisons that behave the same on SQLite and Postgres.

Nothing here relies on storage-engine TTL indexes: expiry is enforced by the
stores at query time and by the periodic reaper in api/main.py.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, Float, Index, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine

Clock = Callable[[], datetime]

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("is_verified", Boolean, nullable=False, default=False),
    Column("registration_token", String(64), index=True),
    Column("registration_token_expires", Float),
    Column("password_reset_token", String(64), index=True),
    Column("password_reset_expires", Float),
    Column("created_at", Float, nullable=False),
)

login_attempts = Table(
    "login_attempts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False),
    Column("ip", String(64), nullable=False),
    Column("successful", Boolean, nullable=False, default=False),
    Column("timestamp", Float, nullable=False),
    Index("ix_login_attempts_email_ts", "email", "timestamp"),
    Index("ix_login_attempts_ip_ts", "ip", "timestamp"),
)

active_sessions = Table(
    "active_sessions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, unique=True),
    Column("token", Text, nullable=False),
    Column("created_at", Float, nullable=False),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_auth_engine(db_url: str) -> Engine:
    """Create the engine and make sure all tables exist."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    metadata.create_all(engine)
    return engine


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_epoch(value: datetime | None) -> float | None:
    return value.timestamp() if value is not None else None


def from_epoch(value: float | None) -> datetime | None:
    return datetime.fromtimestamp(value, tz=timezone.utc) if value is not None else None
