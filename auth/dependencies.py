"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Protected routes accept one credential: Authorization: Bearer <access token>.
Refresh tokens never authenticate a request (they are signed with a different
secret, so TokenSigner.verify_access rejects them).

get_current_user() resolves the token through SessionEngine.authenticate()
and lets its ServiceError propagate, so the API's ServiceError handler maps
an expired token, an invalid token, and a deactivated account to the same
envelope as every other flow.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.engine import SessionEngine
from auth.models import User
from core.errors import unauthorized


def bearer_token(request: Request) -> str | None:
    """Return the raw Bearer token from the Authorization header, if any."""
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_current_user(request: Request) -> User:
    """Require a valid access token. Raises UNAUTHORIZED / FORBIDDEN ServiceError.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    token = bearer_token(request)
    if token is None:
        raise unauthorized("Authentication required.", code="missing_token")
    engine: SessionEngine = request.app.state.engine
    return engine.authenticate(token)
