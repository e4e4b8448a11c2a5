"""
auth/store.py -- Credential Store: SQLAlchemy Core repository for users.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. The engine never touches SQL directly.

Plaintext passwords enter this module at exactly two points, create_user()
and set_password(), and are hashed before any SQL is built. Everything else
reads and writes hashes only.

Atomicity:
  increment_failed_attempts() is one UPDATE ... RETURNING statement that bumps
  the counter and, when the new value reaches max_login_attempts, sets
  locked_until in the same statement. Concurrent wrong-password requests for
  one user therefore observe strictly increasing counts; there is no
  read-compare-write window.

  clear_expired_lock() is a single conditional UPDATE so two requests that
  both see an elapsed lock cannot interleave a fresh lock between them.

  touch_login_if_unlocked() applies the password-login success stamp only if
  no lock is in force at write time, so a lock set after the caller read the
  row still wins.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy import DateTime, case, literal
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.db import from_db, store_errors, to_db, users
from auth.models import User
from auth.passwords import DEFAULT_ROUNDS, hash_password
from core.config import utc_now
from core.errors import conflict

logger = logging.getLogger("authkeep.store")


def normalize_email(email: str) -> str:
    return email.strip().lower()


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore(engine, max_login_attempts=5, lock_window=timedelta(minutes=15))
        user = store.create_user("a@x.com", "Abc12345!")
        store.find_by_email("A@X.com")   # same user; emails are case-normalized
    """

    def __init__(
        self,
        engine: Engine,
        max_login_attempts: int = 5,
        lock_window: timedelta = timedelta(minutes=15),
        bcrypt_rounds: int = DEFAULT_ROUNDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.engine = engine
        self._max_attempts = max_login_attempts
        self._lock_window = lock_window
        self._rounds = bcrypt_rounds
        self._clock = clock

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_user(
        self,
        email: str,
        password_plain: str,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> User:
        """Insert a new unverified, active user and return it.

        Raises a CONFLICT ServiceError if the email is already registered --
        both on the pre-check and when a concurrent insert wins the UNIQUE
        constraint race.
        """
        email = normalize_email(email)
        if self.find_by_email(email) is not None:
            raise conflict("Email already registered", code="email_taken")

        hashed = hash_password(password_plain, self._rounds)
        now = to_db(self._clock())
        with store_errors("create_user"):
            try:
                with self.engine.begin() as conn:
                    result = conn.execute(
                        users.insert().values(
                            email=email,
                            hashed_password=hashed,
                            first_name=first_name,
                            last_name=last_name,
                            is_verified=False,
                            is_active=True,
                            failed_attempts=0,
                            created_at=now,
                            updated_at=now,
                        )
                    )
                    user_id = result.inserted_primary_key[0]
            except IntegrityError:
                raise conflict("Email already registered", code="email_taken") from None

        logger.info("User %d created", user_id)
        return self.find_by_id(user_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_email(self, email: str) -> User | None:
        """Look up a user by email (case-insensitive via normalization)."""
        with store_errors("find_user"):
            with self.engine.connect() as conn:
                row = conn.execute(users.select().where(users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_id(self, user_id: int) -> User | None:
        with store_errors("find_user"):
            with self.engine.connect() as conn:
                row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def set_verified(self, user_id: int) -> None:
        self._update(user_id, "verify_email", is_verified=True)

    def set_active(self, user_id: int, active: bool) -> bool:
        """Activate or deactivate an account. Returns False if user_id is unknown."""
        return self._update(user_id, "update_user", is_active=active)

    def set_password(self, user_id: int, new_password_plain: str) -> None:
        """Hash and store a new password; clears failed_attempts and locked_until."""
        hashed = hash_password(new_password_plain, self._rounds)
        self._update(
            user_id,
            "update_password",
            hashed_password=hashed,
            failed_attempts=0,
            locked_until=None,
        )

    def touch_login(self, user_id: int) -> None:
        """Stamp last_login and reset failed_attempts after a successful login."""
        self._update(user_id, "update_last_login", last_login=to_db(self._clock()), failed_attempts=0)

    def touch_login_if_unlocked(self, user_id: int) -> bool:
        """touch_login() for password login: only applies while no lock is in force.

        A single conditional UPDATE, so a lock set by a concurrent failure
        after the caller read the row still blocks the login. Returns False
        (and writes nothing) if the account is locked.
        """
        now = to_db(self._clock())
        with store_errors("update_last_login"):
            with self.engine.begin() as conn:
                result = conn.execute(
                    users.update()
                    .where(
                        (users.c.id == user_id)
                        & (users.c.locked_until.is_(None) | (users.c.locked_until <= now))
                    )
                    .values(last_login=now, failed_attempts=0, updated_at=now)
                )
        return result.rowcount > 0

    def increment_failed_attempts(self, user_id: int) -> int:
        """Atomically increment failed_attempts and return the new count.

        If the new count reaches max_login_attempts, locked_until is set to
        now + lock_window in the same statement. Returns 0 if the user does
        not exist.
        """
        now = self._clock()
        next_count = users.c.failed_attempts + 1
        lock_until = literal(to_db(now + self._lock_window), DateTime)
        stmt = (
            users.update()
            .where(users.c.id == user_id)
            .values(
                failed_attempts=next_count,
                locked_until=case((next_count >= self._max_attempts, lock_until), else_=users.c.locked_until),
                updated_at=to_db(now),
            )
            .returning(users.c.failed_attempts)
        )
        with store_errors("increment_failed_attempts"):
            with self.engine.begin() as conn:
                row = conn.execute(stmt).fetchone()
        if row is None:
            return 0
        attempts = row[0]
        if attempts >= self._max_attempts:
            logger.warning("User %d locked after %d failed login attempts", user_id, attempts)
        return attempts

    def clear_expired_lock(self, user_id: int) -> bool:
        """Clear locked_until and failed_attempts if the lock has elapsed.

        Returns True if a lock was cleared. A lock still in force is untouched.
        """
        now = to_db(self._clock())
        with store_errors("clear_lock"):
            with self.engine.begin() as conn:
                result = conn.execute(
                    users.update()
                    .where(
                        (users.c.id == user_id)
                        & (users.c.locked_until.is_not(None))
                        & (users.c.locked_until <= now)
                    )
                    .values(locked_until=None, failed_attempts=0, updated_at=now)
                )
        return result.rowcount > 0

    def _update(self, user_id: int, operation: str, **fields) -> bool:
        fields["updated_at"] = to_db(self._clock())
        with store_errors(operation):
            with self.engine.begin() as conn:
                result = conn.execute(users.update().where(users.c.id == user_id).values(**fields))
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        first_name=row.first_name,
        last_name=row.last_name,
        is_verified=bool(row.is_verified),
        is_active=bool(row.is_active),
        failed_attempts=row.failed_attempts,
        locked_until=from_db(row.locked_until),
        last_login=from_db(row.last_login),
        created_at=from_db(row.created_at),
        updated_at=from_db(row.updated_at),
    )
