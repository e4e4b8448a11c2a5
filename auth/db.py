"""
auth/db.py -- Schema, engine factory, and shared helpers for the auth stores.

The three stores (UserStore, CodeLedger, RefreshTokenLedger) share one
SQLAlchemy Engine and one MetaData. SQLAlchemy Core (not ORM) keeps the
dataclasses in auth/models.py as the authoritative domain representation;
swapping SQLite for PostgreSQL is a connection string change.

Timestamps:
  Columns are naive DateTime holding UTC. to_db() / from_db() convert at the
  boundary so every Python-side value is timezone-aware UTC. All "now"
  comparisons bind the caller's clock value as a parameter -- the DB server
  clock is never consulted, so tests can drive time deterministically.

Errors:
  store_errors() translates SQLAlchemyError into a generic INTERNAL
  ServiceError. Storage detail is logged here and never crosses into the
  engine or the HTTP layer.

Security: all queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from core.errors import internal_error

logger = logging.getLogger("authkeep.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", String(255), nullable=False),
    Column("first_name", String(100)),
    Column("last_name", String(100)),
    Column("is_verified", Boolean, nullable=False, default=False),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("failed_attempts", Integer, nullable=False, default=0),
    Column("locked_until", DateTime),
    Column("last_login", DateTime),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
)

one_time_codes = Table(
    "one_time_codes",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("code", String(10), nullable=False),
    Column("purpose", String(20), nullable=False),
    Column("expires_at", DateTime, nullable=False),
    Column("used", Boolean, nullable=False, default=False),
    Column("created_at", DateTime, nullable=False),
    Index("ix_codes_lookup", "user_id", "purpose", "used", "expires_at"),
    Index("ix_codes_expires_at", "expires_at"),
)

refresh_tokens = Table(
    "refresh_tokens",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("token", String(1024), nullable=False, unique=True),
    Column("expires_at", DateTime, nullable=False),
    Column("is_revoked", Boolean, nullable=False, default=False),
    Column("created_at", DateTime, nullable=False),
    Index("ix_refresh_owner", "user_id", "is_revoked", "expires_at"),
)


# ---------------------------------------------------------------------------
# SQLite connection pragmas
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL and foreign keys on every new SQLite connection.

    SQLite PRAGMAs are per-connection, so they are set from the pool's connect
    event rather than once. foreign_keys is off by default in SQLite and the
    ON DELETE CASCADE clauses above depend on it.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_auth_engine(db_url: str) -> Engine:
    """Create the shared Engine and ensure all auth tables exist.

    In-memory SQLite URLs get a StaticPool so every thread (TestClient runs
    sync handlers in a worker pool) sees the same single connection and schema.
    """
    kwargs: dict = {}
    if db_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if db_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    engine = create_engine(db_url, **kwargs)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    metadata.create_all(engine)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def to_db(value: datetime | None) -> datetime | None:
    """Aware datetime -> naive UTC for storage."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def from_db(value: datetime | None) -> datetime | None:
    """Naive UTC from storage -> aware UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@contextmanager
def store_errors(operation: str) -> Iterator[None]:
    """Translate storage failures into a generic INTERNAL ServiceError.

    Usage:
        with store_errors("create_user"):
            ...
    """
    try:
        yield
    except SQLAlchemyError:
        logger.exception("Store operation %s failed", operation)
        raise internal_error(f"Failed to {operation.replace('_', ' ')}", code="store_failure") from None
