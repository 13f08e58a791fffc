"""
Exceptions for xetclient.

Every error raised by the client derives from XetError. Errors carry an
ErrorKind so callers can tell "retry later" (transient) from "will never
succeed" (not found, integrity) from "fix credentials" (auth).
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Classification of transfer failures."""

    RESOLUTION = "resolution"
    AUTH = "auth"
    NOT_FOUND = "not_found"
    INTEGRITY = "integrity"
    TRANSIENT = "transient"
    IO = "io"
    PROTOCOL = "protocol"

    @property
    def is_retryable(self) -> bool:
        return self is ErrorKind.TRANSIENT


class XetError(Exception):
    """Base exception for all xetclient errors."""

    kind: ErrorKind | None = None

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        self.message = message
        self._original_cause = cause
        super().__init__(message)
        if cause is not None:
            self.__cause__ = cause
            self.__suppress_context__ = True

    def __str__(self) -> str:
        return self.message


class InvalidInputError(XetError, ValueError):
    """Method parameters failed validation (empty repo, bad identifier...)."""


# =============================================================================
# Resolution
# =============================================================================


class ResolutionError(XetError):
    """Pointer metadata could not be fetched or parsed."""

    kind = ErrorKind.RESOLUTION

    def __init__(
        self,
        message: str,
        repo: str | None = None,
        path: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        self.repo = repo
        self.path = path
        if repo and path:
            message = f"{repo}/{path}: {message}"
        super().__init__(message, cause=cause)


# =============================================================================
# Authorization
# =============================================================================


class AuthError(XetError):
    """Credential denied, expired, or used outside its scope."""

    kind = ErrorKind.AUTH

    def __init__(
        self,
        message: str = "Authorization failed",
        status_code: int | None = None,
        cause: Exception | None = None,
    ) -> None:
        self.status_code = status_code
        if status_code is not None:
            message = f"{message} (HTTP {status_code})"
        super().__init__(message, cause=cause)


class CredentialExpiredError(AuthError):
    """Credential presented past its expiry."""

    def __init__(self, expiry: object) -> None:
        self.expiry = expiry
        super().__init__(f"CAS credential expired at {expiry}")


class ScopeMismatchError(AuthError):
    """Credential scope does not permit the requested operation."""

    def __init__(self, granted: str, requested: str) -> None:
        self.granted = granted
        self.requested = requested
        super().__init__(
            f"Credential scoped to '{granted}' cannot be used for '{requested}'"
        )


# =============================================================================
# Content errors
# =============================================================================


class NotFoundError(XetError):
    """Content hash unknown to the CAS backend. Never retried."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, content_hash: str, cause: Exception | None = None) -> None:
        self.content_hash = content_hash
        super().__init__(f"No content for hash {content_hash}", cause=cause)


class IntegrityError(XetError):
    """Hash or length mismatch for fetched or assembled data."""

    kind = ErrorKind.INTEGRITY

    def __init__(
        self,
        message: str,
        expected: str | int | None = None,
        actual: str | int | None = None,
    ) -> None:
        self.expected = expected
        self.actual = actual
        if expected is not None and actual is not None:
            message = f"{message} (expected {expected}, got {actual})"
        super().__init__(message)


class ProtocolError(XetError):
    """Backend answered with a status or body the client does not understand."""

    kind = ErrorKind.PROTOCOL

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        cause: Exception | None = None,
    ) -> None:
        self.status_code = status_code
        if status_code is not None:
            message = f"{message} (HTTP {status_code})"
        super().__init__(message, cause=cause)


class TransientNetworkError(XetError):
    """Timeout, connection reset, or 5xx. Retried with backoff."""

    kind = ErrorKind.TRANSIENT

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        cause: Exception | None = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(message, cause=cause)


# =============================================================================
# Transfer
# =============================================================================


class TransferError(XetError):
    """A download failed; identifies the failing descriptor and error kind."""

    def __init__(
        self,
        kind: ErrorKind,
        descriptor_index: int | None,
        message: str,
        cause: Exception | None = None,
    ) -> None:
        self.kind = kind
        self.descriptor_index = descriptor_index
        where = f"descriptor {descriptor_index}" if descriptor_index is not None else "request"
        super().__init__(f"[{kind.value}] {where}: {message}", cause=cause)

    @property
    def retryable(self) -> bool:
        return self.kind.is_retryable

    @classmethod
    def from_error(cls, error: XetError | OSError, descriptor_index: int | None) -> TransferError:
        """Wrap a failure raised while transferring one descriptor."""
        if isinstance(error, TransferError):
            return error
        if isinstance(error, XetError) and error.kind is not None:
            return cls(error.kind, descriptor_index, error.message, cause=error)
        return cls(ErrorKind.IO, descriptor_index, str(error), cause=error)


__all__ = [
    "ErrorKind",
    "XetError",
    "InvalidInputError",
    "ResolutionError",
    "AuthError",
    "CredentialExpiredError",
    "ScopeMismatchError",
    "NotFoundError",
    "IntegrityError",
    "ProtocolError",
    "TransientNetworkError",
    "TransferError",
]
