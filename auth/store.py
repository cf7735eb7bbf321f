"""
auth/store.py -- SQLAlchemy Core persistence layer for User credentials.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. The auth service never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  The password hash is excluded from every query by default. Only the login
  lookup asks for it (include_password=True); save() leaves the stored hash
  untouched when the entity was loaded without it.

  email is UNIQUE at the database level. Two concurrent create() calls for the
  same address cannot both succeed -- the loser gets DuplicateEmailError, which
  the service treats as "account already exists".

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.db import Clock, from_epoch, to_epoch, users, utcnow
from auth.models import User

# Every column except hashed_password.
_PUBLIC_COLUMNS = [c for c in users.c if c.name != "hashed_password"]


class DuplicateEmailError(Exception):
    """Raised by UserStore.create() when the email is already registered."""


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore(create_auth_engine("sqlite:///authflow.db"))
        user = store.create("a@x.com", hash_password("..."), token, expires)
        user = store.get_by_email("a@x.com")
    """

    def __init__(self, engine: Engine, clock: Clock | None = None) -> None:
        self.engine = engine
        self._clock = clock or utcnow

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _select(self, include_password: bool):
        return users.select() if include_password else select(*_PUBLIC_COLUMNS)

    def get_by_email(self, email: str, include_password: bool = False) -> User | None:
        """Look up a user by exact (already normalized) email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(self._select(include_password).where(users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int, include_password: bool = False) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(self._select(include_password).where(users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_registration_token(self, token: str, now: datetime) -> User | None:
        """Return the user holding this registration token if it has not expired."""
        with self.engine.connect() as conn:
            row = conn.execute(
                select(*_PUBLIC_COLUMNS).where(
                    (users.c.registration_token == token) & (users.c.registration_token_expires > to_epoch(now))
                )
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_reset_token(self, token: str, now: datetime) -> User | None:
        """Return the user holding this password reset token if it has not expired."""
        with self.engine.connect() as conn:
            row = conn.execute(
                select(*_PUBLIC_COLUMNS).where(
                    (users.c.password_reset_token == token) & (users.c.password_reset_expires > to_epoch(now))
                )
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def count_by_email(self, email: str) -> int:
        """Number of accounts holding this email. The UNIQUE index keeps it at 0 or 1."""
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(users).where(users.c.email == email)).scalar() or 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(
        self,
        email: str,
        hashed_password: str,
        registration_token: str,
        registration_token_expires: datetime,
    ) -> User:
        """Insert a pending (unverified) user and return it without its password.

        Raises DuplicateEmailError if the email already exists.
        """
        created_at = self._clock()
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    users.insert().values(
                        email=email,
                        hashed_password=hashed_password,
                        is_verified=False,
                        registration_token=registration_token,
                        registration_token_expires=to_epoch(registration_token_expires),
                        created_at=to_epoch(created_at),
                    )
                )
                user_id = result.inserted_primary_key[0]
        except IntegrityError as exc:
            raise DuplicateEmailError(email) from exc
        return User(
            id=user_id,
            email=email,
            is_verified=False,
            registration_token=registration_token,
            registration_token_expires=registration_token_expires,
            created_at=created_at,
        )

    def save(self, user: User) -> None:
        """Persist every mutable field of an existing user.

        hashed_password is only written when the entity carries one, so a
        record loaded without its password keeps the stored hash.
        """
        values = {
            "is_verified": user.is_verified,
            "registration_token": user.registration_token,
            "registration_token_expires": to_epoch(user.registration_token_expires),
            "password_reset_token": user.password_reset_token,
            "password_reset_expires": to_epoch(user.password_reset_expires),
        }
        if user.hashed_password is not None:
            values["hashed_password"] = user.hashed_password
        with self.engine.begin() as conn:
            conn.execute(users.update().where(users.c.id == user.id).values(**values))

    def purge_expired_tokens(self, now: datetime) -> int:
        """Null out registration and reset token pairs whose expiry has passed.

        Lookups already ignore expired tokens; this only keeps dead secrets
        from lingering in the table. Returns the number of pairs cleared.
        """
        cutoff = to_epoch(now)
        with self.engine.begin() as conn:
            reg = conn.execute(
                users.update()
                .where(users.c.registration_token_expires <= cutoff)
                .values(registration_token=None, registration_token_expires=None)
            )
            reset = conn.execute(
                users.update()
                .where(users.c.password_reset_expires <= cutoff)
                .values(password_reset_token=None, password_reset_expires=None)
            )
        return reg.rowcount + reset.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    mapping = row._mapping
    return User(
        id=mapping["id"],
        email=mapping["email"],
        hashed_password=mapping.get("hashed_password"),
        is_verified=bool(mapping["is_verified"]),
        registration_token=mapping["registration_token"],
        registration_token_expires=from_epoch(mapping["registration_token_expires"]),
        password_reset_token=mapping["password_reset_token"],
        password_reset_expires=from_epoch(mapping["password_reset_expires"]),
        created_at=from_epoch(mapping["created_at"]),
    )
