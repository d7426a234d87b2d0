"""Domain errors and the JSON error envelope.

Every error a handler raises on purpose is an ``AppError``; the exception
handlers in ``aistory.api.main`` turn it into ``{"error": ..., "details": ...}``
with the matching status code. Anything else becomes a generic 500.
"""
from __future__ import annotations

from typing import Optional


class AppError(Exception):
    """Base class for errors that map to a fixed HTTP status."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, details: Optional[str] = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_envelope(self) -> dict:
        body = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class BadRequest(AppError):
    status_code = 400
    default_message = "Invalid request"


class Unauthorized(AppError):
    status_code = 401
    default_message = "Unauthorized"


class InvalidToken(Unauthorized):
    """Signature mismatch, malformed or expired token. Callers never learn which."""
    default_message = "Invalid or expired token"


class Forbidden(AppError):
    status_code = 403
    default_message = "Forbidden"


class NotFound(AppError):
    status_code = 404
    default_message = "Resource not found"


class Conflict(AppError):
    status_code = 409
    default_message = "Conflict"


class TooManyRequests(AppError):
    status_code = 429
    default_message = "Too many requests, please try again later"


class DeliveryFailed(AppError):
    status_code = 502
    default_message = "Failed to deliver verification email"


# ── Verification code errors ─────────────────────────────────────────────

class CodeNotFound(BadRequest):
    default_message = "Verification code not found, please request a new one"


class CodeExpired(BadRequest):
    default_message = "Verification code has expired, please request a new one"


class InvalidCode(BadRequest):
    default_message = "Verification code is incorrect"


class TooManyAttempts(TooManyRequests):
    default_message = "Too many incorrect attempts, please request a new code"
