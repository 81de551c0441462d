"""Custom exceptions shared by the server routes and the dashboard client.

Server-side errors carry an HTTP status and a machine-readable code; the app
factory registers one FastAPI handler that serialises any of them into
``{"error": {"code": ..., "message": ...}}``. Client-side errors are raised to
callers of the REST helpers and the frame decoder.
"""
from __future__ import annotations


class DomainError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_body(self) -> dict:
        return {"error": {"code": self.code, "message": self.message}}


class NotFoundError(DomainError):
    """Raised when a disaster (or a record nested under it) does not exist."""

    status_code = 404
    code = "NOT_FOUND"


class PermissionDeniedError(DomainError):
    """Raised when the acting user is neither the owner nor an admin."""

    status_code = 403
    code = "FORBIDDEN"


class InvalidRequestError(DomainError):
    """Raised when a request is well-formed JSON but semantically invalid."""

    status_code = 400
    code = "VALIDATION_ERROR"


class EventDecodeError(ValueError):
    """Raised when an inbound frame is not a known event."""


class ServerUnavailableError(ConnectionError):
    """Both the primary and the fallback endpoint failed for one request."""

    def __init__(self, path: str, primary_error: Exception | None, fallback_error: Exception) -> None:
        super().__init__(f"{path}: primary and fallback servers unavailable")
        self.path = path
        self.primary_error = primary_error
        self.fallback_error = fallback_error
