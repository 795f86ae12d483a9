"""Discriminated results returned by the auth flows."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class AuthErrorKind(str, Enum):
    """Why an auth operation failed."""

    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    ALREADY_USED = "already_used"
    INVALID_TOKEN = "invalid_token"
    UNAUTHORIZED = "unauthorized"
    PROVIDER_AUTH_FAILED = "provider_auth_failed"
    CONFLICT = "conflict"
    VALIDATION = "validation"


# Shown for every opaque-token failure so callers cannot tell the cases apart.
GENERIC_TOKEN_ERROR = "Invalid or expired token."


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """Success with data, or failure with a kind and user-safe message.

    `error` is for logging and branching; `message` is the only thing that
    should reach an end user.
    """

    success: bool
    data: T | None = None
    error: AuthErrorKind | None = None
    message: str | None = None
    details: list[str] = field(default_factory=list)

    @classmethod
    def ok(cls, data: T | None = None) -> "OperationResult[T]":
        """Build a successful result."""
        return cls(success=True, data=data)

    @classmethod
    def fail(
        cls,
        error: AuthErrorKind,
        message: str,
        details: list[str] | None = None,
    ) -> "OperationResult[T]":
        """Build a failed result."""
        return cls(success=False, error=error, message=message, details=details or [])

    @classmethod
    def token_failure(cls, error: AuthErrorKind) -> "OperationResult[T]":
        """Failed opaque-token consumption, with the generic message."""
        return cls.fail(error, GENERIC_TOKEN_ERROR)

    def __bool__(self) -> bool:
        return self.success
