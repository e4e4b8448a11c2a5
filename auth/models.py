"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Dataclasses own
the domain shape; the stores and the SessionEngine do the work.

All datetimes are timezone-aware UTC. The stores convert to and from the naive
UTC values the database holds (see auth/db.py).

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class CodePurpose(str, Enum):
    """What a one-time code proves. Codes never cross purposes."""

    VERIFY_EMAIL = "verify-email"
    PASSWORD_RESET = "password-reset"
    LOGIN = "login"


@dataclass
class User:
    """An account. email is always stored lower-cased and stripped.

    hashed_password is a bcrypt hash and never leaves the auth layer --
    use public() for anything that crosses the HTTP boundary.

    locked_until in the future blocks password login regardless of
    failed_attempts. Whenever locked_until is cleared, failed_attempts is
    reset to 0 in the same statement.
    """

    email: str
    hashed_password: str
    id: int | None = None
    first_name: str | None = None
    last_name: str | None = None
    is_verified: bool = False
    is_active: bool = True
    failed_attempts: int = 0
    locked_until: datetime | None = None
    last_login: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def is_locked(self, now: datetime) -> bool:
        return self.locked_until is not None and self.locked_until > now

    def public(self) -> dict[str, Any]:
        """Projection safe to return to clients (no hash, no lockout counters)."""
        return {
            "id": self.id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "is_verified": self.is_verified,
        }


@dataclass
class OneTimeCode:
    user_id: int
    code: str
    purpose: CodePurpose
    expires_at: datetime
    id: int | None = None
    used: bool = False
    created_at: datetime | None = None


@dataclass
class RefreshToken:
    """A persisted refresh token. token is the full signed JWT string, so the
    ledger can check revocation without decoding it."""

    user_id: int
    token: str
    expires_at: datetime
    id: int | None = None
    is_revoked: bool = False
    created_at: datetime | None = None


# ---------------------------------------------------------------------------
# Flow results returned by the SessionEngine
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FlowResult:
    message: str


@dataclass(frozen=True)
class RegisterResult:
    user: dict[str, Any]
    message: str


@dataclass(frozen=True)
class LoginResult:
    user: dict[str, Any]
    access_token: str
    refresh_token: str
    message: str = "Login successful"


@dataclass(frozen=True)
class RefreshResult:
    access_token: str
    message: str = "Token refreshed successfully"


@dataclass(frozen=True)
class PurgeResult:
    codes_deleted: int = 0
    refresh_tokens_deleted: int = 0
