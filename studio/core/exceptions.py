"""Exception hierarchy for the service layer.

Services raise these deliberately; ``studio.api.errors`` maps them once, at the
HTTP boundary, to the response envelope and status code.
"""

from typing import Any


class AppError(Exception):
    """Base class for errors mapped to an HTTP status."""

    status_code: int = 500
    default_message: str = "An error occurred"

    def __init__(self, message: str | None = None, details: dict[str, Any] | None = None) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class ValidationFailed(AppError):
    """Malformed input. ``details`` maps field names to lists of messages."""

    status_code = 400
    default_message = "Validation failed"


class InvalidOrExpiredToken(ValidationFailed):
    """A one-time token (email verification, password reset) is unknown, used or expired."""

    default_message = "Invalid or expired token"


class Unauthenticated(AppError):
    """Missing, invalid, expired or otherwise untrustworthy credential."""

    status_code = 401
    default_message = "Not authenticated"


class InvalidCredentials(Unauthenticated):
    """Unknown email or wrong password; the two are never distinguished."""

    default_message = "Invalid email or password"


class AccountDeactivated(Unauthenticated):
    default_message = "Account is deactivated"


class EmailNotVerified(Unauthenticated):
    default_message = "Please verify your email before logging in"


class TokenError(Unauthenticated):
    """Signed token could not be trusted."""

    default_message = "Invalid or expired token"


class InvalidToken(TokenError):
    """Bad signature, malformed payload, wrong token type or unknown refresh token."""


class ExpiredToken(TokenError):
    """Signature is valid but the token is past its expiry."""


class Forbidden(AppError):
    """Credential is valid but the role or permission is insufficient."""

    status_code = 403
    default_message = "Insufficient permissions"


class AccountBanned(Forbidden):
    default_message = "Account is banned"


class NotFound(AppError):
    status_code = 404
    default_message = "Resource not found"


class Conflict(AppError):
    status_code = 409
    default_message = "Resource already exists"


class RateLimited(AppError):
    """Admission control rejected the request; ``retry_after`` is in seconds."""

    status_code = 429
    default_message = "Too many requests, please try again later"

    def __init__(self, message: str | None = None, retry_after: int = 60) -> None:
        self.retry_after = retry_after
        super().__init__(message)


class InternalError(AppError):
    status_code = 500
    default_message = "Internal server error"
