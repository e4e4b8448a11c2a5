"""
core/errors.py -- The service error taxonomy.

One exception type, ServiceError, carries a closed ErrorKind discriminant.
The HTTP status for each kind lives in STATUS_CODES, an explicit table that is
checked for exhaustiveness at import time. Business rules raise ServiceError
and let the transport boundary (api/main.py) map it -- nothing between the
engine and the boundary catches and re-labels it.

  kind     -- which family of failure (drives the status code)
  code     -- machine-readable reason, e.g. "token_expired" vs "token_invalid"
  message  -- human-readable text safe to show to the caller
  details  -- optional structured extras (e.g. remaining_attempts)

Layer rule: core/ is the kernel. No imports from api/, auth/, or notify/.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    TOO_MANY_REQUESTS = "too_many_requests"
    INTERNAL = "internal"


STATUS_CODES: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.TOO_MANY_REQUESTS: 429,
    ErrorKind.INTERNAL: 500,
}

_missing = set(ErrorKind) - set(STATUS_CODES)
if _missing:  # pragma: no cover - guards future edits to ErrorKind
    raise RuntimeError(f"STATUS_CODES is missing entries for {sorted(k.value for k in _missing)}")


class ServiceError(Exception):
    """A business-rule or infrastructure failure with a known kind."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.code = code or kind.value
        self.details = details or {}

    @property
    def status_code(self) -> int:
        return STATUS_CODES[self.kind]

    def __repr__(self) -> str:
        return f"ServiceError(kind={self.kind.value!r}, code={self.code!r}, message={self.message!r})"


# ---------------------------------------------------------------------------
# Constructors -- one per kind, so call sites read like the taxonomy
# ---------------------------------------------------------------------------


def validation_error(message: str, code: str = "validation_error", **details: Any) -> ServiceError:
    return ServiceError(ErrorKind.VALIDATION, message, code, details)


def unauthorized(message: str = "Unauthorized access", code: str = "unauthorized", **details: Any) -> ServiceError:
    return ServiceError(ErrorKind.UNAUTHORIZED, message, code, details)


def forbidden(message: str = "Access forbidden", code: str = "forbidden", **details: Any) -> ServiceError:
    return ServiceError(ErrorKind.FORBIDDEN, message, code, details)


def not_found(message: str = "Resource not found", code: str = "not_found", **details: Any) -> ServiceError:
    return ServiceError(ErrorKind.NOT_FOUND, message, code, details)


def conflict(message: str = "Resource already exists", code: str = "conflict", **details: Any) -> ServiceError:
    return ServiceError(ErrorKind.CONFLICT, message, code, details)


def too_many_requests(message: str = "Too many requests", code: str = "rate_limited", **details: Any) -> ServiceError:
    return ServiceError(ErrorKind.TOO_MANY_REQUESTS, message, code, details)


def internal_error(message: str = "Internal server error", code: str = "internal_error", **details: Any) -> ServiceError:
    return ServiceError(ErrorKind.INTERNAL, message, code, details)
