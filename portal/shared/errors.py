"""Error taxonomy shared by services and routes.

Every error carries the HTTP status the JSON API answers with; the app-level
handler in :mod:`portal.app` turns them into ``{"ok": false, "error": ...}``.
"""

from __future__ import annotations


class PortalError(Exception):
    status_code = 500

    def __init__(self, message: str, **extra):
        super().__init__(message)
        self.extra = extra


class NotFoundError(PortalError, LookupError):
    """Raised when an event, participation or student does not exist."""

    status_code = 404


class ValidationError(PortalError, ValueError):
    """Raised when input is missing required fields or is malformed."""

    status_code = 400


class TemplateError(PortalError, ValueError):
    """Raised when a certificate template PDF cannot be parsed."""

    status_code = 422


class ExternalServiceError(PortalError, RuntimeError):
    """Raised when email, storage or the AI provider fails."""

    status_code = 502


class StateError(PortalError, RuntimeError):
    """Raised when an operation is not allowed in the current state."""

    status_code = 409


class IneligibleError(PortalError, PermissionError):
    """Raised when a student's attendance blocks event registration."""

    status_code = 403


class AttendanceDataMissingError(ValidationError):
    """Raised when a student has no attendance percentage on record."""


class CertificateTemplateMissingError(ValidationError):
    """Raised when an event has no certificate template uploaded."""


class CertificatesAlreadySentError(StateError):
    """Raised when the event's certificate latch is already set."""
