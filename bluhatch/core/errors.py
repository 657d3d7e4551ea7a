"""Error taxonomy — every failure surfaced to a caller carries an ErrorKind.

Callers branch on ``kind``; the message is for humans.
"""

from __future__ import annotations

import enum


class ErrorKind(str, enum.Enum):
    validation_error = "validation_error"
    not_found = "not_found"
    storage_failure = "storage_failure"
    conflict = "conflict"
    external_service_unavailable = "external_service_unavailable"
    unauthorized = "unauthorized"


_DEFAULT_MESSAGES = {
    ErrorKind.validation_error: "Invalid request",
    ErrorKind.not_found: "Not found or access denied",
    ErrorKind.storage_failure: "Storage operation failed",
    ErrorKind.conflict: "Resource already exists",
    ErrorKind.external_service_unavailable: "External service unavailable",
    ErrorKind.unauthorized: "User not authenticated",
}


class BluhatchError(Exception):
    """Base class for all domain errors."""

    kind: ErrorKind = ErrorKind.validation_error

    def __init__(self, message: str | None = None):
        self.message = message or _DEFAULT_MESSAGES[self.kind]
        super().__init__(self.message)


class ValidationError(BluhatchError):
    kind = ErrorKind.validation_error


class NotFoundOrForbidden(BluhatchError):
    """Missing and not-owned are indistinguishable to the caller."""

    kind = ErrorKind.not_found


class StorageError(BluhatchError):
    kind = ErrorKind.storage_failure


class UploadConflict(BluhatchError):
    kind = ErrorKind.conflict


class ExternalServiceUnavailable(BluhatchError):
    kind = ErrorKind.external_service_unavailable


class Unauthorized(BluhatchError):
    kind = ErrorKind.unauthorized


class MissingCallerIdentity(Unauthorized):
    """Raised when data access is attempted without an owning user id."""
