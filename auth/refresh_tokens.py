"""
auth/refresh_tokens.py -- Refresh-Token Ledger.

Tokens are stored as the full signed string (UNIQUE indexed), so revocation
and validity checks never need to decode the JWT in the data layer.

is_valid() checks all three conditions -- not revoked, not expired, owned by
the user named in the token's claims -- in a single query. Signature validity
alone is never enough to refresh.

revoke_all() commits before returning, so any later is_valid() for that user
on any connection sees the revocation.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.engine import Engine

from auth.db import refresh_tokens, store_errors, to_db
from core.config import utc_now

logger = logging.getLogger("authkeep.refresh_tokens")


class RefreshTokenLedger:
    def __init__(self, engine: Engine, clock: Callable[[], datetime] = utc_now) -> None:
        self.engine = engine
        self._clock = clock

    def store(self, user_id: int, token: str, expires_at: datetime) -> None:
        with store_errors("store_refresh_token"):
            with self.engine.begin() as conn:
                conn.execute(
                    refresh_tokens.insert().values(
                        user_id=user_id,
                        token=token,
                        expires_at=to_db(expires_at),
                        is_revoked=False,
                        created_at=to_db(self._clock()),
                    )
                )

    def is_valid(self, token: str, user_id: int) -> bool:
        """True only if the token exists, is unrevoked, unexpired, and owned by user_id."""
        now = to_db(self._clock())
        t = refresh_tokens
        with store_errors("check_refresh_token"):
            with self.engine.connect() as conn:
                row = conn.execute(
                    select(t.c.id).where(
                        (t.c.token == token)
                        & (t.c.user_id == user_id)
                        & (t.c.is_revoked.is_(False))
                        & (t.c.expires_at > now)
                    )
                ).fetchone()
        return row is not None

    def revoke(self, token: str) -> bool:
        """Revoke one token. Idempotent: returns False if it was absent or already revoked."""
        t = refresh_tokens
        with store_errors("revoke_refresh_token"):
            with self.engine.begin() as conn:
                result = conn.execute(
                    t.update().where((t.c.token == token) & (t.c.is_revoked.is_(False))).values(is_revoked=True)
                )
        return result.rowcount > 0

    def revoke_all(self, user_id: int) -> int:
        """Revoke every live refresh token for a user. Returns the number revoked."""
        t = refresh_tokens
        with store_errors("revoke_refresh_tokens"):
            with self.engine.begin() as conn:
                revoked = conn.execute(
                    t.update().where((t.c.user_id == user_id) & (t.c.is_revoked.is_(False))).values(is_revoked=True)
                ).rowcount
        logger.info("Revoked %d refresh tokens for user %d", revoked, user_id)
        return revoked

    def cleanup_expired(self) -> int:
        """Delete expired refresh tokens (revoked or not). Scheduled purge only."""
        now = to_db(self._clock())
        with store_errors("cleanup_refresh_tokens"):
            with self.engine.begin() as conn:
                deleted = conn.execute(refresh_tokens.delete().where(refresh_tokens.c.expires_at < now)).rowcount
        logger.info("Purged %d expired refresh tokens", deleted)
        return deleted
