"""Typed failures raised by the storage layer."""

from __future__ import annotations


class StorageError(RuntimeError):
    """Base exception for storage failures.

    Carries the underlying backend's message and, when known, the native
    statement that triggered it.
    """

    def __init__(self, message: str, *, statement: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.statement = statement


class ConstraintViolation(StorageError):
    """Raised when a write conflicts with a unique or check constraint."""


class TransientStorageError(StorageError):
    """Raised for failures that are expected to clear on retry.

    Callers should retry the operation or surface it as a temporary
    unavailability; it never indicates bad data.
    """


class ConnectionExhausted(TransientStorageError):
    """Raised when no pooled connection became free within the wait budget."""


class BackendUnavailable(TransientStorageError):
    """Raised when the backend cannot be reached or dropped the connection."""


class MigrationFailure(StorageError):
    """Raised when a schema repair precondition does not hold."""


class TranslationError(ValueError):
    """Raised for malformed neutral statements.

    Signals a programming error such as an unterminated literal or a
    placeholder count mismatch. Not a ``StorageError`` subclass.
    """
