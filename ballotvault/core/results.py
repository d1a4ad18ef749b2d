"""
Operation Results
=================

Structured success/failure values returned across the subsystem boundary.

Components report expected failures (bad input, unknown account, missing
permission, lockout, storage outage) as values rather than exceptions.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Final, Optional


GENERIC_LOGIN_FAILURE: Final[str] = "Invalid credentials"
LOCKED_MESSAGE: Final[str] = "Account temporarily locked. Try again later."
STORAGE_FAILURE_MESSAGE: Final[str] = "Credential storage is unavailable. Try again later."


class ErrorKind(Enum):
    """Failure taxonomy shared by every component."""
    INVALID_INPUT = "invalid_input"
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    CONFLICT = "conflict"
    LOCKED = "locked"
    STORAGE_UNAVAILABLE = "storage_unavailable"
    # Generic login failure; never says which part of the credentials was wrong
    INVALID_CREDENTIALS = "invalid_credentials"

    @property
    def retryable(self) -> bool:
        return self in (ErrorKind.STORAGE_UNAVAILABLE, ErrorKind.LOCKED)


@dataclass(frozen=True, slots=True)
class Result:
    """
    Outcome of a store or service operation.

    Attributes:
        ok: Whether the operation succeeded
        value: Optional payload on success
        error: Failure kind when ``ok`` is False
        message: Human-readable detail suitable for the caller
    """
    ok: bool
    value: Any = None
    error: Optional[ErrorKind] = None
    message: str = ""

    @classmethod
    def success(cls, value: Any = None, message: str = "") -> Result:
        return cls(ok=True, value=value, message=message)

    @classmethod
    def failure(cls, error: ErrorKind, message: str = "") -> Result:
        return cls(ok=False, error=error, message=message)

    def __bool__(self) -> bool:
        return self.ok


@dataclass(frozen=True, slots=True)
class AuthResult:
    """
    Outcome of a login attempt.

    Attributes:
        success: True only when the credentials were accepted
        needs_reset: The account was flagged for a mandatory password change;
            the flag has been cleared and the caller must prompt for a new one
        error: Failure kind (INVALID_CREDENTIALS, LOCKED, STORAGE_UNAVAILABLE)
        message: Message safe to show to an unauthenticated user
        legacy_digest: The password matched a legacy hashing scheme
    """
    success: bool
    needs_reset: bool = False
    error: Optional[ErrorKind] = None
    message: str = ""
    legacy_digest: bool = False

    @classmethod
    def accepted(cls, needs_reset: bool = False, legacy_digest: bool = False) -> AuthResult:
        return cls(success=True, needs_reset=needs_reset, legacy_digest=legacy_digest)

    @classmethod
    def rejected(cls) -> AuthResult:
        return cls(success=False, error=ErrorKind.INVALID_CREDENTIALS, message=GENERIC_LOGIN_FAILURE)

    @classmethod
    def locked(cls) -> AuthResult:
        return cls(success=False, error=ErrorKind.LOCKED, message=LOCKED_MESSAGE)

    @classmethod
    def unavailable(cls) -> AuthResult:
        return cls(success=False, error=ErrorKind.STORAGE_UNAVAILABLE, message=STORAGE_FAILURE_MESSAGE)

    def __bool__(self) -> bool:
        return self.success
