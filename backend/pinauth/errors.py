# Overview: Authentication error taxonomy and its JSON rendering.

"""
Authentication errors surfaced to callers.

Every failure the core reports to the UI/API layer is an AuthError subclass
with a stable machine code, an HTTP status and a generic user-facing message.
Messages never say whether an identity exists or which throttle tripped.

UnknownIdentity is internal only: the credential store raises it, login
records the distinction in the audit trail and converts it to
InvalidCredentials before anything reaches the caller.
"""

from flask import jsonify


class AuthError(Exception):
    """Base class for errors returned to authentication callers."""

    code = "auth_error"
    http_status = 401
    message = "Authentication failed."

    def __init__(self, message: str | None = None, retry_after: int | None = None):
        super().__init__(message or self.message)
        if message:
            self.message = message
        self.retry_after = retry_after

    def to_dict(self) -> dict:
        body = {"error": self.code, "message": self.message}
        if self.retry_after is not None:
            body["retry_after_seconds"] = self.retry_after
        return body


class RateLimited(AuthError):
    code = "rate_limited"
    http_status = 429
    message = "Too many attempts. Try again later."

    def __init__(self, retry_after: int):
        super().__init__(retry_after=retry_after)


class Locked(AuthError):
    code = "locked"
    http_status = 429
    message = "Too many incorrect PIN attempts. Try again when the countdown ends."

    def __init__(self, retry_after: int):
        super().__init__(retry_after=retry_after)


class InvalidCredentials(AuthError):
    code = "invalid_credentials"
    http_status = 401
    message = "Incorrect PIN."


class Expired(AuthError):
    code = "session_expired"
    http_status = 401
    message = "Session expired. Please sign in again."


class Revoked(AuthError):
    code = "session_revoked"
    http_status = 401
    message = "Session ended. Please sign in again."


class SessionNotFound(AuthError):
    code = "session_not_found"
    http_status = 401
    message = "Please sign in."


class CsrfMismatch(AuthError):
    code = "csrf_mismatch"
    http_status = 403
    message = "Request could not be verified. Refresh and try again."


class Forbidden(AuthError):
    code = "forbidden"
    http_status = 403
    message = "You do not have access to this action."


class StoreUnavailable(AuthError):
    code = "store_unavailable"
    http_status = 503
    message = "Service temporarily unavailable. Try again."


class UnknownIdentity(Exception):
    """Identity missing, inactive or without a credential. Never shown to callers."""


class PinValidationError(ValueError):
    """Raised when a new PIN doesn't meet format or strength requirements."""


def error_response(err: AuthError):
    """Render an AuthError as (response, status) with Retry-After when known."""
    response = jsonify(err.to_dict())
    response.status_code = err.http_status
    if err.retry_after is not None:
        response.headers["Retry-After"] = str(err.retry_after)
    return response
