"""
auth/tokens.py -- Token Signer: access and refresh JWTs.

Security design decisions:
  JWT: python-jose with HS256. Two token classes with DIFFERENT secrets and
       lifetimes but the same issuer/audience:
         access  -- short-lived bearer credential, JWT_SECRET
         refresh -- long-lived, exchanged for new access tokens, JWT_REFRESH_SECRET
       Because the secrets differ, a refresh token never verifies as an
       access token and vice versa.

       Claims: user_id, email, iss, aud, iat, exp, jti. jti is random so two
       tokens issued for the same user in the same second are still distinct
       strings (the refresh ledger stores tokens under a UNIQUE index).

  Verification failures raise an UNAUTHORIZED ServiceError with a distinct
       code -- "token_expired" or "token_invalid" -- so callers and tests can
       tell them apart while the HTTP layer maps both to 401.

  decode() reads claims WITHOUT verifying the signature. It exists only so
       the engine can read `exp` from a refresh token it just signed; it must
       never feed a trust decision.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from jose import ExpiredSignatureError, JWTError, jwt

from auth.models import User
from core.config import EngineConfig, utc_now
from core.errors import unauthorized

logger = logging.getLogger("authkeep.tokens")

_ALGORITHM = "HS256"


class TokenSigner:
    """Stateless issue/verify of access and refresh tokens.

    Usage:
        signer = TokenSigner(settings.engine_config())
        access = signer.issue_access(user)
        claims = signer.verify_access(access)   # {"user_id": 1, "email": ..., ...}
    """

    def __init__(self, config: EngineConfig, clock: Callable[[], datetime] = utc_now) -> None:
        self._config = config
        self._clock = clock

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue_access(self, user: User) -> str:
        return self._issue(user, self._config.jwt_secret, self._config.access_token_ttl.total_seconds())

    def issue_refresh(self, user: User) -> str:
        return self._issue(user, self._config.jwt_refresh_secret, self._config.refresh_token_ttl.total_seconds())

    def _issue(self, user: User, secret: str, ttl_seconds: float) -> str:
        now = int(self._clock().timestamp())
        claims: dict[str, Any] = {
            "user_id": user.id,
            "email": user.email,
            "iss": self._config.jwt_issuer,
            "aud": self._config.jwt_audience,
            "iat": now,
            "exp": now + int(ttl_seconds),
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(claims, secret, algorithm=_ALGORITHM)

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify_access(self, token: str) -> dict[str, Any]:
        return self._verify(token, self._config.jwt_secret, "Access")

    def verify_refresh(self, token: str) -> dict[str, Any]:
        return self._verify(token, self._config.jwt_refresh_secret, "Refresh")

    def _verify(self, token: str, secret: str, label: str) -> dict[str, Any]:
        try:
            claims = jwt.decode(
                token,
                secret,
                algorithms=[_ALGORITHM],
                audience=self._config.jwt_audience,
                issuer=self._config.jwt_issuer,
            )
        except ExpiredSignatureError:
            logger.info("%s token rejected: expired", label)
            raise unauthorized(f"{label} token has expired", code="token_expired") from None
        except JWTError as exc:
            logger.info("%s token rejected: %s", label, exc)
            raise unauthorized(f"Invalid {label.lower()} token", code="token_invalid") from None

        if not isinstance(claims.get("user_id"), int) or "email" not in claims:
            logger.info("%s token rejected: missing identity claims", label)
            raise unauthorized(f"Invalid {label.lower()} token", code="token_invalid")
        return claims

    # ------------------------------------------------------------------
    # Unverified decode
    # ------------------------------------------------------------------

    @staticmethod
    def decode(token: str) -> dict[str, Any]:
        """Return claims without verifying the signature. Never use for trust."""
        try:
            return jwt.get_unverified_claims(token)
        except JWTError:
            raise unauthorized("Invalid token", code="token_invalid") from None

    @staticmethod
    def expiry_of(token: str) -> datetime:
        """Read `exp` from a token this process just signed."""
        return datetime.fromtimestamp(TokenSigner.decode(token)["exp"], tz=timezone.utc)
