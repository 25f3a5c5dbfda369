"""
Error taxonomy shared by every token engine.

Two tiers are kept apart so callers can tell "the credential or the request is
bad" from "the system could not complete the operation":

- :class:`LogicError` and its subclasses are caller-attributable and safe to
  report generically to an end user.
- :class:`InfrastructureError` and its subclasses are not the caller's fault;
  retry or alert.

These exceptions are **framework-agnostic**. The translation to HTTP responses
(RFC 7807) lives in ``tokenvault/core/errors.py``.
"""

from __future__ import annotations

from dataclasses import dataclass

# --------------------------------------------------------------------------- #
# Base types
# --------------------------------------------------------------------------- #


class TokenError(Exception):
    """Base class for every error raised by the token engines."""

    pass


class LogicError(TokenError):
    """
    Caller-attributable failure.

    Notes
    -----
    - Never retried by the engines.
    - The message is generic enough to be shown to an end user.
    """

    pass


class InfrastructureError(TokenError):
    """
    The operation could not be completed for reasons outside the caller's control.

    Notes
    -----
    After an infrastructure error on a mutating call the outcome is unknown;
    callers must re-parse the token to discover the actual state.
    """

    pass


# --------------------------------------------------------------------------- #
# Logic errors
# --------------------------------------------------------------------------- #


class InvalidTokenError(LogicError):
    """
    Raised when a token does not exist, has expired in the store, or was revoked.

    The three cases are reported identically on purpose.
    """

    def __init__(self, message: str = "invalid token") -> None:
        super().__init__(message)


class MalformedTokenError(InvalidTokenError):
    """Raised when a token value fails the well-formedness gate."""

    def __init__(self, message: str = "malformed token") -> None:
        super().__init__(message)


class ExpiredTokenError(LogicError):
    """Raised when a token's recorded expiry lies in the past."""

    def __init__(self, message: str = "token expired") -> None:
        super().__init__(message)


class SignatureError(LogicError):
    """Raised when a signed token does not match its signature."""

    def __init__(self, message: str = "invalid signature") -> None:
        super().__init__(message)


@dataclass(slots=True, eq=False)
class RefreshLimitError(LogicError):
    """
    Raised when a token may not be refreshed any more.

    :param limit: Configured refresh limit (``-1`` means refresh is disabled).
    :type limit: int
    :param count: Refreshes already performed.
    :type count: int
    """

    limit: int
    count: int

    def __str__(self) -> str:  # pragma: no cover
        if self.limit == -1:
            return "token refresh is disabled"
        return f"refresh limit reached ({self.count}/{self.limit})"


class TokenMismatchError(LogicError):
    """Raised when a refresh token is not bound to the presented access token."""

    def __init__(self, message: str = "refresh token is not bound to this access token") -> None:
        super().__init__(message)


@dataclass(slots=True, eq=False)
class AlreadyHasChildError(LogicError):
    """
    Raised when a second child is requested for a token.

    :param child: Value of the existing child token.
    :type child: str
    """

    child: str

    def __str__(self) -> str:  # pragma: no cover
        return "token already has a child token"


class ValidationError(LogicError):
    """Raised for invalid call arguments (TTL, refresh limit, payload)."""

    pass


class ReservedFieldError(ValidationError):
    """Raised when a payload field collides with a reserved metadata field."""

    def __init__(self, field: str) -> None:
        super().__init__(f"field name is reserved: {field!r}")
        self.field = field


class ConfigurationError(LogicError):
    """Raised when a manager is constructed (or used) with an invalid configuration."""

    pass


# --------------------------------------------------------------------------- #
# Infrastructure errors
# --------------------------------------------------------------------------- #


class StoreError(InfrastructureError):
    """Raised when the backing store is unreachable or rejects a command."""

    pass


@dataclass(slots=True, eq=False)
class OperationTimeoutError(StoreError):
    """
    Raised when an operation exceeds its time budget.

    :param operation: Name of the engine operation.
    :type operation: str
    :param timeout: Budget in seconds.
    :type timeout: float
    """

    operation: str
    timeout: float

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.operation} timed out after {self.timeout:g}s"


@dataclass(slots=True, eq=False)
class TransactionAbortedError(StoreError):
    """
    Raised when an optimistic transaction keeps losing to concurrent writers.

    :param operation: Name of the engine operation.
    :type operation: str
    :param attempts: Number of attempts made.
    :type attempts: int
    """

    operation: str
    attempts: int

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.operation} aborted after {self.attempts} attempt(s)"


class CollisionError(InfrastructureError):
    """Raised when a freshly generated token value is already taken."""

    def __init__(self, message: str = "token value already exists") -> None:
        super().__init__(message)


class TokenGenerationError(InfrastructureError):
    """Raised when the identifier generator fails to produce a value."""

    def __init__(self, message: str = "unable to generate token value") -> None:
        super().__init__(message)


__all__ = [
    "TokenError",
    "LogicError",
    "InfrastructureError",
    "InvalidTokenError",
    "MalformedTokenError",
    "ExpiredTokenError",
    "SignatureError",
    "RefreshLimitError",
    "TokenMismatchError",
    "AlreadyHasChildError",
    "ValidationError",
    "ReservedFieldError",
    "ConfigurationError",
    "StoreError",
    "OperationTimeoutError",
    "TransactionAbortedError",
    "CollisionError",
    "TokenGenerationError",
]
