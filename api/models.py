"""
API request and response models for AuthKeep REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Shape validation (email syntax, code format, password strength, name charset)
happens here and fails with 422 before any flow runs. Business rules (email
taken, wrong code, lockout) are the engine's and fail with its ServiceError.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

import re
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from core.config import get_settings

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
NAME_PATTERN = re.compile(r"^[a-zA-Z\s'-]+$")
SPECIAL_CHARACTERS = '!@#$%^&*(),.?":{}|<>'

PASSWORD_RULES = "Password must be at least 8 characters with uppercase, lowercase, number and special character"


# ---------------------------------------------------------------------------
# Field validators shared across models
# ---------------------------------------------------------------------------


def _check_email(value: str) -> str:
    value = value.strip().lower()
    if len(value) > 255 or not EMAIL_PATTERN.match(value):
        raise ValueError("Please provide a valid email")
    return value


def _check_code(value: str) -> str:
    length = get_settings().otp_length
    if len(value) != length or not value.isdigit():
        raise ValueError(f"Code must be {length} digits")
    return value


def _check_password_strength(value: str) -> str:
    """8+ characters with at least one upper, lower, digit and special character."""
    if (
        len(value) < 8
        or not any(c.islower() for c in value)
        or not any(c.isupper() for c in value)
        or not any(c.isdigit() for c in value)
        or not any(c in SPECIAL_CHARACTERS for c in value)
    ):
        raise ValueError(PASSWORD_RULES)
    return value


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class EmailRequest(BaseModel):
    """Body for resend-verification, login/code/request and password/reset/request."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=255)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _check_email(v)


class RegisterRequest(EmailRequest):
    """Request body for POST /api/v1/auth/register."""

    password: str = Field(max_length=128)
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return _check_password_strength(v)

    @field_validator("first_name", "last_name")
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        if not 2 <= len(v) <= 50:
            raise ValueError("Name must be between 2 and 50 characters")
        if not NAME_PATTERN.match(v):
            raise ValueError("Name can only contain letters, spaces, hyphens and apostrophes")
        return v


class CodeRequest(EmailRequest):
    """Body for verify-email and login/code/verify."""

    code: str

    @field_validator("code")
    @classmethod
    def validate_code(cls, v: str) -> str:
        return _check_code(v)


class LoginRequest(EmailRequest):
    """Request body for POST /api/v1/auth/login.

    No strength check here: a login must be able to reject a wrong password
    through the lockout counter, not through a 422.
    """

    password: str = Field(min_length=1, max_length=128)


class RefreshRequest(BaseModel):
    """Optional body for refresh and logout. The cookie is used when absent."""

    refresh_token: Optional[str] = Field(default=None, max_length=2048)


class ResetPasswordRequest(CodeRequest):
    """Request body for POST /api/v1/auth/password/reset/verify."""

    new_password: str = Field(max_length=128)

    @field_validator("new_password")
    @classmethod
    def validate_new_password(cls, v: str) -> str:
        return _check_password_strength(v)


class ChangePasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/password/change."""

    current_password: str = Field(min_length=1, max_length=128)
    new_password: str = Field(max_length=128)
    confirm_password: str = Field(max_length=128)

    @field_validator("new_password")
    @classmethod
    def validate_new_password(cls, v: str) -> str:
        return _check_password_strength(v)

    @model_validator(mode="after")
    def check_passwords(self) -> "ChangePasswordRequest":
        if self.new_password == self.current_password:
            raise ValueError("New password must be different from current password")
        if self.confirm_password != self.new_password:
            raise ValueError("Passwords do not match")
        return self


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserOut(BaseModel):
    """Public projection of a user. Never carries the password hash."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_verified: bool


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class RegisterResponse(MessageResponse):
    user: UserOut


class RefreshResponse(MessageResponse):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class LoginResponse(RefreshResponse):
    """Response for password login and login/code/verify.

    The refresh token is returned in the body and also set as an httpOnly
    cookie; browser clients can ignore the body copy.
    """

    refresh_token: str
    user: UserOut


class MeResponse(UserOut):
    is_active: bool
    last_login: Optional[str] = None
    created_at: Optional[str] = None


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[Union[str, dict[str, Any]]] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
