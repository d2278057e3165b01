"""
Error kinds and the value-or-error result returned by every service call.

Backend clients raise ``BackendError`` (or a subclass) and return ``None`` for
missing rows. Services translate both into a ``Result`` so callers check
``result.ok`` instead of catching, or call ``unwrap()`` to get an exception.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class BackendError(Exception):
    """Raised by backend clients when the remote operation fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class AuthApiError(BackendError):
    """Identity provider rejected the request (bad credentials, no session...)."""


class StorageError(BackendError):
    """Object store failure. ``status_code`` is 404 for missing objects."""


class ErrorKind(str, Enum):
    AUTH_FAILED = "AUTH_FAILED"
    PROFILE_NOT_FOUND = "PROFILE_NOT_FOUND"
    ACCOUNT_DEACTIVATED = "ACCOUNT_DEACTIVATED"
    NOT_FOUND = "NOT_FOUND"
    SESSION_ERROR = "SESSION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    BACKEND_ERROR = "BACKEND_ERROR"


@dataclass(frozen=True)
class ServiceError:
    kind: ErrorKind
    message: str

    def as_dict(self) -> dict:
        return {"kind": self.kind.value, "message": self.message}


class ServiceException(Exception):
    """Raised by ``Result.unwrap`` for a failed result."""

    kind = ErrorKind.BACKEND_ERROR

    def __init__(self, error: ServiceError):
        super().__init__(error.message)
        self.error = error


class AuthFailed(ServiceException):
    kind = ErrorKind.AUTH_FAILED


class ProfileNotFound(ServiceException):
    kind = ErrorKind.PROFILE_NOT_FOUND


class AccountDeactivated(ServiceException):
    kind = ErrorKind.ACCOUNT_DEACTIVATED


class NotFound(ServiceException):
    kind = ErrorKind.NOT_FOUND


class SessionError(ServiceException):
    kind = ErrorKind.SESSION_ERROR


class InvalidInput(ServiceException):
    kind = ErrorKind.INVALID_INPUT


class BackendFailure(ServiceException):
    kind = ErrorKind.BACKEND_ERROR


_EXCEPTIONS = {
    cls.kind: cls
    for cls in (
        AuthFailed,
        ProfileNotFound,
        AccountDeactivated,
        NotFound,
        SessionError,
        InvalidInput,
        BackendFailure,
    )
}


@dataclass(frozen=True)
class Result(Generic[T]):
    value: Optional[T] = None
    error: Optional[ServiceError] = None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> "Result[T]":
        return cls(error=ServiceError(kind=kind, message=message))

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Optional[T]:
        """Return the value, or raise the exception matching the error kind."""
        if self.error is None:
            return self.value
        raise _EXCEPTIONS[self.error.kind](self.error)
