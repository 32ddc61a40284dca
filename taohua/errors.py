"""
Error taxonomy for the memory store.

Every failure the core can report has an ``ErrorKind``. Exceptions carry the
kind plus an optional diagnostic context; the service layer turns them into
``Err`` results so callers never have to catch anything.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    WEAK_PASSWORD = "WeakPassword"
    NOT_AUTHENTICATED = "NotAuthenticated"
    AUTHENTICATION_FAILED = "AuthenticationFailed"
    NOT_FOUND = "NotFound"
    STORAGE_IO_FAILURE = "StorageIOFailure"
    CORRUPT_RECORD = "CorruptRecord"
    PASSWORD_ALREADY_SET = "PasswordAlreadySet"
    INVALID_REQUEST = "InvalidRequest"
    INTERNAL = "Internal"


class TaohuaError(Exception):
    """
    Base exception for all store errors.

    Subclasses pin ``kind``; ``context`` holds structured detail for logs and
    diagnostics and must never contain passwords, keys or plaintext.
    """

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, context: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


class WeakPasswordError(TaohuaError):
    """Password scored below the configured strength threshold."""

    kind = ErrorKind.WEAK_PASSWORD


class NotAuthenticatedError(TaohuaError):
    """An operation needed the session key but the session is locked."""

    kind = ErrorKind.NOT_AUTHENTICATED


class AuthenticationFailedError(TaohuaError):
    """
    Wrong password or tampered data.

    Raised with the same message whatever the cause so a caller cannot tell
    a wrong key from a corrupted envelope.
    """

    kind = ErrorKind.AUTHENTICATION_FAILED


class NotFoundError(TaohuaError):
    kind = ErrorKind.NOT_FOUND


class StorageIOError(TaohuaError):
    """Disk error while reading or writing the store."""

    kind = ErrorKind.STORAGE_IO_FAILURE


class CorruptRecordError(TaohuaError):
    """Persisted data could not be parsed. Surfaced, never auto-repaired."""

    kind = ErrorKind.CORRUPT_RECORD


class PasswordAlreadySetError(TaohuaError):
    kind = ErrorKind.PASSWORD_ALREADY_SET


class InvalidRequestError(TaohuaError):
    kind = ErrorKind.INVALID_REQUEST
