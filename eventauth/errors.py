"""Application error taxonomy.

Every error carries the HTTP status it maps to and a client-safe message.
The exception handlers in ``eventauth.main`` render them as ``{"error": message}``.
"""

from typing import Optional


class AppError(Exception):
    """Base class for errors that are reported to API clients."""

    status_code: int = 500

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code


class ValidationError(AppError):
    """Missing or malformed input."""

    status_code = 400


class AuthenticationError(AppError):
    """Bad credentials or a missing/invalid token."""

    status_code = 401


class TokenExpiredError(AuthenticationError):
    """A correctly signed token whose expiry has passed."""

    def __init__(self, message: str = "Token expired"):
        super().__init__(message, code="token_expired")


class AuthorizationError(AppError):
    """Authenticated, but acting on another user's resource."""

    status_code = 403


class ConflictError(AppError):
    """Duplicate email or phone number."""

    status_code = 409


class InternalError(AppError):
    """Unexpected failure; message is safe to show to clients."""

    status_code = 500
