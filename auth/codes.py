"""
auth/codes.py -- One-Time-Code Ledger.

Typed, expiring, single-use numeric codes bound to (user, purpose).

Invariants:
  Supersession -- issue() marks every unused code of the same (user, purpose)
      used and inserts the new one inside ONE transaction. A concurrent
      verify() either runs before the transaction commits (and may consume
      the old code, which was legitimately valid at that instant) or after
      it (and finds only the new code). There is no moment where two codes
      for the same purpose are both accepted.

  Single use -- verify() is one conditional UPDATE. The WHERE clause selects
      the most recent matching, unused, unexpired row and also requires
      used = false, so of two concurrent verifies with the same code exactly
      one sees rowcount == 1.

  Never log a code above DEBUG. The caller delivers it out-of-band.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.engine import Engine

from auth.db import one_time_codes, store_errors, to_db
from auth.models import CodePurpose
from core.config import utc_now

logger = logging.getLogger("authkeep.codes")


def generate_numeric_code(length: int = 6) -> str:
    """Return a cryptographically random decimal code of exactly `length` digits.

    Drawn uniformly from [10**(length-1), 10**length), so the first digit is
    never 0 and the string never needs padding.
    """
    low = 10 ** (length - 1)
    return str(low + secrets.randbelow(10**length - low))


class CodeLedger:
    """Repository for OneTimeCode rows.

    code_generator is injectable so tests can script the codes they expect
    (e.g. lambda: "000111"); production uses generate_numeric_code.
    """

    def __init__(
        self,
        engine: Engine,
        code_length: int = 6,
        ttl: timedelta = timedelta(minutes=10),
        clock: Callable[[], datetime] = utc_now,
        code_generator: Callable[[], str] | None = None,
    ) -> None:
        self.engine = engine
        self._ttl = ttl
        self._clock = clock
        self._generate = code_generator or (lambda: generate_numeric_code(code_length))

    def issue(self, user_id: int, purpose: CodePurpose) -> str:
        """Supersede prior unused codes for (user, purpose) and store a new one.

        Returns the plaintext code. The caller is responsible for delivery.
        """
        code = self._generate()
        now = self._clock()
        table = one_time_codes
        with store_errors("create_code"):
            with self.engine.begin() as conn:
                superseded = conn.execute(
                    table.update()
                    .where(
                        (table.c.user_id == user_id)
                        & (table.c.purpose == purpose.value)
                        & (table.c.used.is_(False))
                    )
                    .values(used=True)
                ).rowcount
                conn.execute(
                    table.insert().values(
                        user_id=user_id,
                        code=code,
                        purpose=purpose.value,
                        expires_at=to_db(now + self._ttl),
                        used=False,
                        created_at=to_db(now),
                    )
                )
        logger.info("Issued %s code for user %d (superseded %d)", purpose.value, user_id, superseded)
        logger.debug("Code for user %d purpose %s: %s", user_id, purpose.value, code)
        return code

    def verify(self, user_id: int, code: str, purpose: CodePurpose) -> bool:
        """Consume a matching code. Returns False (never raises) on no match.

        Only the most recently created qualifying row can be consumed; an
        older duplicate is never accepted in its place.
        """
        now = to_db(self._clock())
        table = one_time_codes
        latest = (
            select(table.c.id)
            .where(
                (table.c.user_id == user_id)
                & (table.c.code == code)
                & (table.c.purpose == purpose.value)
                & (table.c.used.is_(False))
                & (table.c.expires_at > now)
            )
            .order_by(table.c.created_at.desc(), table.c.id.desc())
            .limit(1)
            .scalar_subquery()
        )
        with store_errors("verify_code"):
            with self.engine.begin() as conn:
                result = conn.execute(
                    table.update().where((table.c.id == latest) & (table.c.used.is_(False))).values(used=True)
                )
        matched = result.rowcount == 1
        if not matched:
            logger.info("No valid %s code matched for user %d", purpose.value, user_id)
        return matched

    def recent_issue_count(self, user_id: int, purpose: CodePurpose, window: timedelta = timedelta(hours=1)) -> int:
        """Number of codes issued for (user, purpose) within the trailing window."""
        since = to_db(self._clock() - window)
        table = one_time_codes
        with store_errors("count_codes"):
            with self.engine.connect() as conn:
                count = conn.execute(
                    select(func.count())
                    .select_from(table)
                    .where(
                        (table.c.user_id == user_id)
                        & (table.c.purpose == purpose.value)
                        & (table.c.created_at > since)
                    )
                ).scalar()
        return count or 0

    def cleanup_expired(self) -> int:
        """Delete codes past expiry. Returns the number of rows removed.

        Called from the scheduled purge (main.py cleanup, api lifespan task),
        never from a request path.
        """
        now = to_db(self._clock())
        with store_errors("cleanup_codes"):
            with self.engine.begin() as conn:
                deleted = conn.execute(one_time_codes.delete().where(one_time_codes.c.expires_at < now)).rowcount
        logger.info("Purged %d expired one-time codes", deleted)
        return deleted
