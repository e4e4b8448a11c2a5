"""
api/routes/v1/auth.py -- Account and session REST endpoints.

Routes:
  POST /api/v1/auth/register               -- create account, send verify-email code (201)
  POST /api/v1/auth/verify-email           -- consume verify-email code
  POST /api/v1/auth/resend-verification    -- issue a fresh verify-email code
  POST /api/v1/auth/login                  -- password login; sets refresh cookie
  POST /api/v1/auth/login/code/request     -- send a login code
  POST /api/v1/auth/login/code/verify      -- exchange a login code for a session
  POST /api/v1/auth/refresh                -- new access token from a refresh token
  POST /api/v1/auth/logout                 -- revoke refresh token; clears cookie
  POST /api/v1/auth/password/reset/request -- send a reset code (same reply either way)
  POST /api/v1/auth/password/reset/verify  -- set new password with a reset code
  POST /api/v1/auth/password/change        -- change password (requires auth)
  GET  /api/v1/auth/me                     -- current user info (requires auth)

Handlers are thin: parse the body, call one SessionEngine method, shape the
response. Every business failure is a ServiceError raised by the engine and
rendered by the handler in api/main.py.

Security:
  [H2] Login and code endpoints are rate-limited per IP (LOGIN_RATE_LIMIT,
       CODE_RATE_LIMIT). This sits in front of the per-account lockout.
  [M5] Cache-Control: no-store on every response that carries a token.
  The refresh token cookie is httpOnly, SameSite=strict, and scoped to
  /api/v1/auth so it is only sent to refresh and logout.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from api.limiter import CODE_LIMIT, LOGIN_LIMIT, limiter
from api.models import (
    ChangePasswordRequest,
    CodeRequest,
    EmailRequest,
    LoginRequest,
    LoginResponse,
    MeResponse,
    MessageResponse,
    RefreshRequest,
    RefreshResponse,
    RegisterRequest,
    RegisterResponse,
    ResetPasswordRequest,
    UserOut,
)
from auth.dependencies import get_current_user
from auth.engine import SessionEngine
from auth.models import LoginResult, User
from core.config import get_settings
from core.errors import unauthorized

REFRESH_COOKIE = "refresh_token"
_COOKIE_PATH = "/api/v1/auth"

# Auth policy:
# - everything under /auth is public except password/change and me,
#   which require a Bearer access token (get_current_user).
router = APIRouter()


# ---------------------------------------------------------------------------
# Registration and email verification
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=RegisterResponse, status_code=201)
@limiter.limit(LOGIN_LIMIT)  # BELOW @router so the registered endpoint is the rate-limited wrapper
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an unverified account and email a verification code."""
    result = _engine(request).register(body.email, body.password, body.first_name, body.last_name)
    return _json(RegisterResponse(message=result.message, user=UserOut(**result.user)), status_code=201)


@router.post("/auth/verify-email", response_model=MessageResponse)
@limiter.limit(CODE_LIMIT)
def verify_email(request: Request, body: CodeRequest) -> MessageResponse:
    result = _engine(request).verify_email(body.email, body.code)
    return MessageResponse(message=result.message)


@router.post("/auth/resend-verification", response_model=MessageResponse)
@limiter.limit(CODE_LIMIT)
def resend_verification(request: Request, body: EmailRequest) -> MessageResponse:
    result = _engine(request).resend_verification(body.email)
    return MessageResponse(message=result.message)


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(LOGIN_LIMIT)  # [H2]
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Failure modes come from the engine: 401 bad_credentials (with the number
    of attempts left), 403 account_locked, 403 email_not_verified,
    403 account_inactive. An unknown email and a wrong password for an
    unlocked account are indistinguishable.
    """
    engine = _engine(request)
    return _session_response(engine, engine.login(body.email, body.password))


@router.post("/auth/login/code/request", response_model=MessageResponse)
@limiter.limit(CODE_LIMIT)  # [H2]
def request_login_code(request: Request, body: EmailRequest) -> MessageResponse:
    result = _engine(request).request_login_code(body.email)
    return MessageResponse(message=result.message)


@router.post("/auth/login/code/verify", response_model=LoginResponse)
@limiter.limit(CODE_LIMIT)  # [H2]
def verify_login_code(request: Request, body: CodeRequest) -> JSONResponse:
    engine = _engine(request)
    return _session_response(engine, engine.verify_login_code(body.email, body.code))


# ---------------------------------------------------------------------------
# Session tokens
# ---------------------------------------------------------------------------


@router.post("/auth/refresh", response_model=RefreshResponse)
def refresh(request: Request, body: Optional[RefreshRequest] = None) -> JSONResponse:
    """Exchange a refresh token (body or cookie) for a new access token."""
    token = _refresh_token_from(request, body)
    if token is None:
        raise unauthorized("Refresh token required", code="missing_token")
    engine = _engine(request)
    result = engine.refresh(token)
    return _json(
        RefreshResponse(
            message=result.message,
            access_token=result.access_token,
            expires_in=int(engine.config.access_token_ttl.total_seconds()),
        )
    )


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, body: Optional[RefreshRequest] = None) -> JSONResponse:
    """Revoke the refresh token if one was presented and clear the cookie.

    Logging out without a token, or with an unknown one, still succeeds.
    """
    token = _refresh_token_from(request, body)
    message = "Logout successful"
    if token is not None:
        message = _engine(request).logout(token).message
    resp = _json(MessageResponse(message=message))
    resp.delete_cookie(REFRESH_COOKIE, path=_COOKIE_PATH)
    return resp


# ---------------------------------------------------------------------------
# Password reset and change
# ---------------------------------------------------------------------------


@router.post("/auth/password/reset/request", response_model=MessageResponse)
@limiter.limit(CODE_LIMIT)
def request_password_reset(request: Request, body: EmailRequest) -> MessageResponse:
    """Always 200 with the same message, whether or not the email exists."""
    result = _engine(request).request_password_reset(body.email)
    return MessageResponse(message=result.message)


@router.post("/auth/password/reset/verify", response_model=MessageResponse)
@limiter.limit(CODE_LIMIT)
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    result = _engine(request).reset_password_with_code(body.email, body.code, body.new_password)
    return MessageResponse(message=result.message)


@router.post("/auth/password/change", response_model=MessageResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
) -> JSONResponse:
    """Change password for the authenticated user. Ends every session."""
    result = _engine(request).change_password(current_user.id, body.current_password, body.new_password)
    resp = _json(MessageResponse(message=result.message))
    resp.delete_cookie(REFRESH_COOKIE, path=_COOKIE_PATH)
    return resp


@router.get("/auth/me", response_model=MeResponse)
def me(current_user: User = Depends(get_current_user)) -> MeResponse:
    """Return identity information for the currently authenticated user."""
    return MeResponse(
        **current_user.public(),
        is_active=current_user.is_active,
        last_login=current_user.last_login.isoformat() if current_user.last_login else None,
        created_at=current_user.created_at.isoformat() if current_user.created_at else None,
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _engine(request: Request) -> SessionEngine:
    return request.app.state.engine


def _json(model: BaseModel, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=model.model_dump())
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _session_response(engine: SessionEngine, result: LoginResult) -> JSONResponse:
    """Shared response for both login flows: tokens in the body, refresh in a cookie."""
    resp = _json(
        LoginResponse(
            message=result.message,
            access_token=result.access_token,
            expires_in=int(engine.config.access_token_ttl.total_seconds()),
            refresh_token=result.refresh_token,
            user=UserOut(**result.user),
        )
    )
    resp.set_cookie(
        REFRESH_COOKIE,
        result.refresh_token,
        max_age=int(engine.config.refresh_token_ttl.total_seconds()),
        httponly=True,
        secure=get_settings().secure_cookies,
        samesite="strict",
        path=_COOKIE_PATH,
    )
    return resp


def _refresh_token_from(request: Request, body: Optional[RefreshRequest]) -> Optional[str]:
    """Body wins over cookie so API clients can refresh a specific session."""
    if body is not None and body.refresh_token:
        return body.refresh_token
    return request.cookies.get(REFRESH_COOKIE) or None
