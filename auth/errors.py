"""
auth/errors.py -- Typed authentication errors mapped to HTTP responses.

Stores, the token verifier and the federated parser never raise these; they
return None / False / an outcome enum. Route handlers translate those results
into one of the classes below and api/main.py renders the ErrorResponse
envelope from status_code, code and message.

AuthenticationError is deliberately coarse: the same code and message are
used for bad credentials, missing tokens, expired tokens, tampered tokens
and wrong-kind tokens so the caller cannot tell them apart.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for errors that map to a 4xx response."""

    status_code: int = 400
    code: str = "bad_request"
    default_message: str = "Bad request."

    def __init__(self, message: str | None = None, *, code: str | None = None) -> None:
        self.message = message or self.default_message
        if code is not None:
            self.code = code
        super().__init__(self.message)


class ValidationError(AuthError):
    """Missing or malformed input (400)."""

    status_code = 400
    code = "validation_error"
    default_message = "Request validation failed."


class AuthenticationError(AuthError):
    """Bad credentials or an invalid token of any kind (401)."""

    status_code = 401
    code = "unauthorized"
    default_message = "Authentication required."


class AuthorizationError(AuthError):
    """Valid identity, insufficient role (403)."""

    status_code = 403
    code = "forbidden"
    default_message = "Access denied."


class NotFoundError(AuthError):
    status_code = 404
    code = "not_found"
    default_message = "Not found."


class ConflictError(AuthError):
    """Unique constraint hit, e.g. an email already registered (409)."""

    status_code = 409
    code = "conflict"
    default_message = "Resource already exists."


class AttemptLimitError(AuthError):
    """OTP attempts exhausted. The record is already deleted; retrying is pointless (400)."""

    status_code = 400
    code = "otp_attempts_exceeded"
    default_message = "Too many verification attempts."
