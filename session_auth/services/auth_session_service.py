"""Session use cases: login, register, refresh, revoke, current user, OAuth login.

Each operation composes the password, token, refresh token and identity
services into one unit and reports its outcome as a ``Result``. Unexpected
failures (store down, entropy exhausted) are logged in full and surfaced
only as a kind plus a correlation id.
"""

import asyncio
import functools
from typing import Optional
from uuid import uuid4

import structlog

from session_auth.errors import (
    CryptoFailure,
    EmailAlreadyExistsError,
    Err,
    ErrorKind,
    Ok,
    Result,
    TokenErrorKind,
)
from session_auth.models.auth import RegisterRequest
from session_auth.models.session import OAuthIdentity, SessionTokens
from session_auth.models.user import Account, NewAccount
from session_auth.services.identity_service import IdentityService
from session_auth.services.password_service import (
    PasswordService,
    password_policy_violations,
)
from session_auth.services.refresh_token_service import RefreshTokenService
from session_auth.services.token_service import IGNORE_EXPIRY, STRICT, TokenService
from session_auth.services.user_store import UserStore

logger = structlog.get_logger(__name__)

INVALID_CREDENTIALS_MESSAGE = "Invalid email or password"


def current_correlation_id() -> str:
    """The correlation id bound for this request, or a fresh one."""
    bound = structlog.contextvars.get_contextvars().get("correlation_id")
    return str(bound) if bound else str(uuid4())


def _guarded(operation: str):
    """Turn unexpected exceptions and internal errors into correlated Err results."""

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                result = await func(*args, **kwargs)
            except asyncio.TimeoutError:
                correlation_id = current_correlation_id()
                logger.error(
                    "session_store_timeout",
                    operation=operation,
                    correlation_id=correlation_id,
                )
                return Err(
                    ErrorKind.SERVICE_UNAVAILABLE,
                    "The service is temporarily unavailable",
                    correlation_id,
                )
            except CryptoFailure:
                correlation_id = current_correlation_id()
                logger.error(
                    "session_crypto_failure",
                    operation=operation,
                    correlation_id=correlation_id,
                    exc_info=True,
                )
                return Err(ErrorKind.CRYPTO_FAILURE, "An internal error occurred", correlation_id)
            except Exception:
                correlation_id = current_correlation_id()
                logger.error(
                    "session_operation_failed",
                    operation=operation,
                    correlation_id=correlation_id,
                    exc_info=True,
                )
                return Err(ErrorKind.INTERNAL, "An internal error occurred", correlation_id)

            if isinstance(result, Err) and isinstance(result.kind, ErrorKind):
                if result.kind.is_internal and result.correlation_id is None:
                    correlation_id = current_correlation_id()
                    logger.error(
                        "session_operation_failed",
                        operation=operation,
                        kind=result.kind.value,
                        detail=result.message,
                        correlation_id=correlation_id,
                    )
                    return Err(result.kind, "An internal error occurred", correlation_id)
            return result

        return wrapper

    return decorator


class AuthSessionService:
    """Top-level session operations. Holds no state of its own."""

    def __init__(
        self,
        *,
        users: UserStore,
        passwords: PasswordService,
        tokens: TokenService,
        refresh_tokens: RefreshTokenService,
        identities: IdentityService,
        min_age: int = 18,
        max_age: int = 100,
        timeout: float = 5.0,
    ):
        self.users = users
        self.passwords = passwords
        self.tokens = tokens
        self.refresh_tokens = refresh_tokens
        self.identities = identities
        self.min_age = min_age
        self.max_age = max_age
        self.timeout = timeout
        self._dummy_hash: Optional[str] = None

    async def _bounded(self, operation):
        return await asyncio.wait_for(operation, self.timeout)

    async def _issue_session(self, account: Account) -> Result[SessionTokens]:
        access = self.tokens.issue_access_token(account.id, account.email, account.name)
        refresh = await self.refresh_tokens.issue(account.id, access_jti=access.jti)
        return Ok(SessionTokens(access_token=access, refresh_token=refresh, account=account))

    async def _burn_verification(self, password: str) -> None:
        """Spend the same hashing work as a real check when no account matched."""
        if self._dummy_hash is None:
            self._dummy_hash = await asyncio.to_thread(
                self.passwords.hash_password, uuid4().hex
            )
        await asyncio.to_thread(self.passwords.verify_password, password, self._dummy_hash)

    @_guarded("login")
    async def login(self, email: str, password: str) -> Result[SessionTokens]:
        """Authenticate with email and password and start a session.

        Unknown email, inactive account and wrong password all fail with the
        same INVALID_CREDENTIALS error.
        """
        account = await self._bounded(self.users.get_by_email(email))

        if account is None or not account.is_active:
            await self._burn_verification(password)
            logger.warning("login_failed", reason="unknown_account")
            return Err(ErrorKind.INVALID_CREDENTIALS, INVALID_CREDENTIALS_MESSAGE)

        matches = await asyncio.to_thread(
            self.passwords.verify_password, password, account.password_hash
        )
        if not matches:
            logger.warning("login_failed", reason="bad_password", account_id=str(account.id))
            return Err(ErrorKind.INVALID_CREDENTIALS, INVALID_CREDENTIALS_MESSAGE)

        logger.info("user_logged_in", account_id=str(account.id))
        return await self._issue_session(account)

    @_guarded("register")
    async def register(self, profile: RegisterRequest) -> Result[SessionTokens]:
        """Create a local account and start a session for it."""
        if profile.password != profile.confirm_password:
            return Err(ErrorKind.VALIDATION_ERROR, "Passwords do not match")

        problems = password_policy_violations(profile.password)
        if problems:
            return Err(ErrorKind.VALIDATION_ERROR, "; ".join(problems))

        existing = await self._bounded(self.users.get_by_email(profile.email))
        if existing is not None:
            logger.warning("registration_conflict", account_id=str(existing.id))
            return Err(ErrorKind.CONFLICT, f"User with email {profile.email} already exists")

        if profile.age < self.min_age:
            return Err(
                ErrorKind.BUSINESS_RULE_VIOLATION,
                f"User must be at least {self.min_age} years old",
            )
        if profile.age > self.max_age:
            return Err(
                ErrorKind.BUSINESS_RULE_VIOLATION,
                f"Age must be between {self.min_age} and {self.max_age}",
            )

        password_hash = await asyncio.to_thread(
            self.passwords.hash_password, profile.password
        )
        try:
            account = await self._bounded(
                self.users.create(
                    NewAccount(
                        name=profile.name,
                        email=profile.email,
                        age=profile.age,
                        password_hash=password_hash,
                    )
                )
            )
        except EmailAlreadyExistsError:
            return Err(ErrorKind.CONFLICT, f"User with email {profile.email} already exists")
        except asyncio.TimeoutError:
            raise
        except Exception as e:
            return Err(ErrorKind.ACCOUNT_CREATION_FAILED, f"Failed to create user: {e}")

        logger.info("user_registered", account_id=str(account.id))
        return await self._issue_session(account)

    @_guarded("refresh")
    async def refresh(self, access_token: str, refresh_token: str) -> Result[SessionTokens]:
        """Exchange a (possibly expired) access token and a refresh token for a new pair.

        Nothing new is handed out unless the refresh token rotation succeeded.
        """
        claims = self.tokens.validate(access_token, IGNORE_EXPIRY)
        if isinstance(claims, Err):
            logger.warning("refresh_rejected", reason=claims.kind.value)
            return Err(ErrorKind.UNAUTHORIZED, "Invalid access token")

        account = await self._bounded(self.users.get_by_id(claims.value.sub))
        if account is None or not account.is_active:
            logger.warning("refresh_rejected", reason="account_unavailable")
            return Err(ErrorKind.UNAUTHORIZED, "User not found or disabled")

        # Signed now, released only if the rotation below succeeds
        access = self.tokens.issue_access_token(account.id, account.email, account.name)
        rotated = await self.refresh_tokens.rotate(
            refresh_token, account.id, access_jti=access.jti
        )

        if isinstance(rotated, Err):
            if rotated.kind == ErrorKind.ROTATION_OUTCOME_UNKNOWN:
                return await self._after_unknown_rotation(refresh_token)
            return Err(ErrorKind.UNAUTHORIZED, "Invalid or expired refresh token")

        logger.info(
            "tokens_refreshed",
            account_id=str(account.id),
            previous_jti=claims.value.jti,
            jti=access.jti,
        )
        return Ok(
            SessionTokens(access_token=access, refresh_token=rotated.value, account=account)
        )

    async def _after_unknown_rotation(self, refresh_token: str) -> Err:
        """Tell the caller whether retrying with the same refresh token is safe."""
        try:
            still_valid = await self.refresh_tokens.is_valid(refresh_token)
        except Exception:
            logger.error("rotation_outcome_check_failed", exc_info=True)
            still_valid = False

        if still_valid:
            return Err(
                ErrorKind.SERVICE_UNAVAILABLE,
                "Token refresh did not complete; retry with the same refresh token",
                current_correlation_id(),
            )
        return Err(ErrorKind.UNAUTHORIZED, "Token refresh failed; please log in again")

    async def revoke(self, refresh_token: str) -> Result[None]:
        """Revoke a refresh token (logout). Always succeeds."""
        try:
            await self.refresh_tokens.revoke(refresh_token)
        except Exception:
            logger.error(
                "refresh_token_revoke_failed",
                correlation_id=current_correlation_id(),
                exc_info=True,
            )
        return Ok(None)

    @_guarded("current_user")
    async def current_user(self, access_token: str) -> Result[Account]:
        """Resolve a bearer access token to its current account state."""
        claims = self.tokens.validate(access_token, STRICT)
        if isinstance(claims, Err):
            message = (
                "Access token has expired"
                if claims.kind == TokenErrorKind.EXPIRED
                else "Invalid access token"
            )
            return Err(ErrorKind.UNAUTHORIZED, message)

        account = await self._bounded(self.users.get_by_id(claims.value.sub))
        if account is None or not account.is_active:
            return Err(ErrorKind.UNAUTHORIZED, "User not found or disabled")
        return Ok(account)

    @_guarded("oauth_callback")
    async def oauth_callback(self, identity: OAuthIdentity) -> Result[SessionTokens]:
        """Start a session for a provider-verified identity, provisioning if needed."""
        if not identity.email.strip():
            logger.warning("oauth_missing_email", provider=identity.provider)
            return Err(
                ErrorKind.VALIDATION_ERROR,
                "Email claim not provided by OAuth provider",
            )

        reconciled = await self.identities.find_or_create(identity, timeout=self.timeout)
        if isinstance(reconciled, Err):
            return reconciled

        logger.info(
            "oauth_login",
            account_id=str(reconciled.value.id),
            provider=identity.provider,
        )
        return await self._issue_session(reconciled.value)
