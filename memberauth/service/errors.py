from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each exception class defines both an HTTP status_code and a stable
    error_code:
    - validation_error (400)
    - suspended_user (400)
    - unauthorized (401)
    - server_error (500)
    """

    status_code: int = 400
    error_code: str = "validation_error"
    default_message: str = "Bad Request"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        message = message or self.default_message
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    error_code = "validation_error"


class BadRequestError(ValidationError):
    """Alias for ValidationError - request is malformed or invalid."""
    pass


class SuspendedUserError(ServiceError):
    """The account exists but is suspended (400).

    Suspension is deliberately disclosed to the client; deletion is not.
    """
    status_code = 400
    error_code = "suspended_user"
    default_message = "Suspended User"


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401).

    Covers missing, malformed, expired and revoked tokens as well as wrong
    credentials and deleted or unknown accounts. The message never varies so
    callers cannot tell those cases apart.
    """
    status_code = 401
    error_code = "unauthorized"
    default_message = "Authentication information is missing/invalid"

    def __init__(self, *, detail: Optional[dict] = None) -> None:
        super().__init__(detail=detail)


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "server_error"
    default_message = "Internal Server Error"


__all__ = [
    "ServiceError",
    "ValidationError",
    "BadRequestError",
    "SuspendedUserError",
    "AuthenticationError",
    "ServerError",
]
