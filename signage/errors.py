"""Error types raised by the data-access and validation layers."""

from typing import Dict, Optional


class SignageError(Exception):
    """Base class for recoverable application errors."""

    message = "Something went wrong"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)
        self.message = message or self.message


class ValidationError(SignageError):
    """A submitted form failed schema validation."""

    message = "Please fix the highlighted fields"

    def __init__(self, errors: Dict[str, str], message: Optional[str] = None):
        super().__init__(message)
        self.errors = errors


class NotFoundError(SignageError):
    message = "Record not found"


class DuplicateError(SignageError):
    message = "A record with that name already exists"


class ReferentialIntegrityError(SignageError):
    """A delete was rejected because other records still reference the target."""

    message = "Record is in use and cannot be deleted"


class ConflictError(SignageError):
    """The record changed since it was loaded (stale version)."""

    message = "This record was changed by someone else. Reload and try again."


class AuthError(SignageError):
    message = "Invalid email or password"


class StoreError(SignageError):
    """Any other failure talking to the database."""

    message = "The operation failed. Please try again."
