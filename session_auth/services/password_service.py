"""Password hashing, verification and strength policy."""

import re
import secrets

import bcrypt
import structlog

from session_auth.errors import CryptoFailure

logger = structlog.get_logger(__name__)

MIN_PASSWORD_LENGTH = 8
# bcrypt only consumes the first 72 bytes of its input
MAX_PASSWORD_BYTES = 72

_PASSWORD_RULES = (
    (re.compile(r"[A-Z]"), "Password must contain at least one uppercase letter"),
    (re.compile(r"[a-z]"), "Password must contain at least one lowercase letter"),
    (re.compile(r"[0-9]"), "Password must contain at least one digit"),
    (re.compile(r"[^a-zA-Z0-9]"), "Password must contain at least one special character"),
)


def password_policy_violations(password: str) -> list[str]:
    """Return every strength rule the password breaks (empty when acceptable)."""
    problems = []
    if len(password) < MIN_PASSWORD_LENGTH:
        problems.append(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
        )
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        problems.append(f"Password must be at most {MAX_PASSWORD_BYTES} bytes long")
    for pattern, message in _PASSWORD_RULES:
        if not pattern.search(password):
            problems.append(message)
    return problems


class PasswordService:
    """Salted bcrypt hashing with constant-time verification."""

    def __init__(self, rounds: int = 12):
        self.rounds = rounds

    def hash_password(self, password: str) -> str:
        """Hash a password using bcrypt.

        The result encodes algorithm, cost and salt together, so it is all
        that is needed to verify later.

        Args:
            password: Plain-text password to hash

        Returns:
            Bcrypt hash string

        Raises:
            CryptoFailure: If no salt could be drawn from the entropy source
        """
        try:
            salt = bcrypt.gensalt(rounds=self.rounds)
        except OSError as e:
            logger.error("password_salt_generation_failed", error=str(e))
            raise CryptoFailure("Entropy source unavailable") from e
        hashed = bcrypt.hashpw(password.encode("utf-8"), salt)
        return hashed.decode("utf-8")

    def verify_password(self, password: str, password_hash: str) -> bool:
        """Verify a password against a bcrypt hash.

        Comparison is constant-time. Malformed hashes and over-long inputs
        verify as False instead of raising.

        Args:
            password: Plain-text password to check
            password_hash: Bcrypt hash to verify against

        Returns:
            True if the password matches, False otherwise
        """
        try:
            return bcrypt.checkpw(
                password.encode("utf-8"),
                password_hash.encode("utf-8"),
            )
        except ValueError:
            logger.warning("password_hash_unverifiable")
            return False

    def unusable_password_hash(self) -> str:
        """Hash a random secret nobody knows.

        Used for accounts that authenticate through an external provider, so
        they cannot log in with a password until one is explicitly set.
        """
        try:
            secret = secrets.token_urlsafe(32)
        except OSError as e:
            raise CryptoFailure("Entropy source unavailable") from e
        return self.hash_password(secret)
