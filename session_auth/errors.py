"""Result types and error kinds shared by the session services.

Service operations never raise for expected failures. They return either
``Ok(value)`` or ``Err(kind, message)`` so callers have to branch on the
outcome explicitly::

    result = await sessions.login(email, password)
    if isinstance(result, Err):
        ...
    tokens = result.value
"""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar, Union

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Failure categories surfaced by the session services."""

    INVALID_CREDENTIALS = "invalid_credentials"
    UNAUTHORIZED = "unauthorized"
    CONFLICT = "conflict"
    BUSINESS_RULE_VIOLATION = "business_rule_violation"
    VALIDATION_ERROR = "validation_error"
    # Refresh token missing, revoked, expired or owned by another account
    INVALID_TOKEN = "invalid_token"
    # Store timed out mid-rotation; the old token may or may not be revoked
    ROTATION_OUTCOME_UNKNOWN = "rotation_outcome_unknown"
    SERVICE_UNAVAILABLE = "service_unavailable"
    ACCOUNT_CREATION_FAILED = "account_creation_failed"
    CRYPTO_FAILURE = "crypto_failure"
    INTERNAL = "internal"

    @property
    def is_internal(self) -> bool:
        return self in _INTERNAL_KINDS


_INTERNAL_KINDS = frozenset(
    {
        ErrorKind.ACCOUNT_CREATION_FAILED,
        ErrorKind.CRYPTO_FAILURE,
        ErrorKind.INTERNAL,
    }
)


class TokenErrorKind(str, Enum):
    """Reasons an access token failed validation."""

    SIGNATURE_INVALID = "signature_invalid"
    ALGORITHM_MISMATCH = "algorithm_mismatch"
    EXPIRED = "expired"
    MALFORMED = "malformed"
    CLAIM_MISMATCH = "claim_mismatch"


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful outcome carrying a value."""

    value: T


@dataclass(frozen=True)
class Err:
    """Failed outcome.

    Attributes:
        kind: ErrorKind or TokenErrorKind
        message: Caller-safe description (never internal detail)
        correlation_id: Set for internal failures so callers can quote it
    """

    kind: Union[ErrorKind, TokenErrorKind]
    message: str
    correlation_id: Optional[str] = None


Result = Union[Ok[T], Err]


class CryptoFailure(RuntimeError):
    """Raised when the system entropy source cannot produce random bytes."""


class EmailAlreadyExistsError(Exception):
    """Raised by a user store when an active account already uses the email."""

    def __init__(self, email: str):
        super().__init__(f"An active account already uses {email}")
        self.email = email


class DuplicateTokenError(Exception):
    """Raised by a refresh token store when a token digest already exists."""
