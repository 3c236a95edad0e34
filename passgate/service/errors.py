from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass carries an HTTP ``status_code`` and a stable ``error_code``
    that clients can branch on:

    - validation_error (400)
    - invalid_code (400)
    - expired (400)
    - unauthorized (401)
    - forbidden (403)
    - not_found (404)
    - conflict (409)
    - locked (423)
    - rate_limited (429)
    - upstream_failure (500)
    - server_error (500)
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Request input is missing or malformed (400)."""
    status_code = 400
    error_code = "validation_error"


class InvalidCodeError(ServiceError):
    """Submitted one-time code or purpose token does not match (400)."""
    status_code = 400
    error_code = "invalid_code"


class ExpiredError(ServiceError):
    """Submitted one-time code has passed its expiry (400)."""
    status_code = 400
    error_code = "expired"


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class ForbiddenError(ServiceError):
    """Access denied for the account's current state or role (403)."""
    status_code = 403
    error_code = "forbidden"


class NotFoundError(ServiceError):
    """Requested account not found (404)."""
    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    """State conflict, e.g. duplicate email or repeated step (409)."""
    status_code = 409
    error_code = "conflict"


class LockedError(ServiceError):
    """Account temporarily locked after repeated failures (423)."""
    status_code = 423
    error_code = "locked"


class RateLimitedError(ServiceError):
    """Request quota exhausted (429)."""
    status_code = 429
    error_code = "rate_limited"


class UpstreamError(ServiceError):
    """A collaborator such as the mailer or hasher failed (500)."""
    status_code = 500
    error_code = "upstream_failure"


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "server_error"


__all__ = [
    "ServiceError",
    "ValidationError",
    "InvalidCodeError",
    "ExpiredError",
    "AuthenticationError",
    "ForbiddenError",
    "NotFoundError",
    "ConflictError",
    "LockedError",
    "RateLimitedError",
    "UpstreamError",
    "ServerError",
]
