"""Map identities verified by an external provider onto local accounts."""

import asyncio
from typing import Optional

import structlog

from session_auth.errors import (
    CryptoFailure,
    EmailAlreadyExistsError,
    Err,
    ErrorKind,
    Ok,
    Result,
)
from session_auth.models.session import OAuthIdentity
from session_auth.models.user import NAME_MAX_LENGTH, NAME_MIN_LENGTH, Account, NewAccount
from session_auth.services.password_service import PasswordService
from session_auth.services.user_store import UserStore

logger = structlog.get_logger(__name__)


class IdentityService:
    """Find-or-create for externally authenticated accounts."""

    def __init__(
        self,
        users: UserStore,
        passwords: PasswordService,
        *,
        default_age: int = 18,
        timeout: float = 5.0,
    ):
        self.users = users
        self.passwords = passwords
        self.default_age = default_age
        self.timeout = timeout

    async def find_or_create(
        self, identity: OAuthIdentity, *, timeout: Optional[float] = None
    ) -> Result[Account]:
        """Return the active account for the identity's email, creating it if absent.

        An existing account is returned unchanged; provider data never
        overwrites local profile fields. A new account gets a credential
        nobody knows and ``default_age`` for the age the provider does not
        supply. Store failures are not retried.

        Args:
            identity: Provider-verified email and display name
            timeout: Store call bound in seconds

        Returns:
            Ok(Account), Err(VALIDATION_ERROR) without an email,
            Err(ACCOUNT_CREATION_FAILED) if the account could not be written
        """
        bound = timeout if timeout is not None else self.timeout
        email = identity.email.strip()
        if not email:
            return Err(ErrorKind.VALIDATION_ERROR, "Identity provider did not supply an email")

        account = await asyncio.wait_for(self.users.get_by_email(email), bound)
        if account is not None:
            logger.info(
                "oauth_account_matched",
                account_id=str(account.id),
                provider=identity.provider,
            )
            return Ok(account)

        try:
            credential = await asyncio.to_thread(self.passwords.unusable_password_hash)
        except CryptoFailure:
            return Err(ErrorKind.CRYPTO_FAILURE, "Could not create account")

        new_account = NewAccount(
            name=_account_name(identity.display_name, email),
            email=email,
            age=self.default_age,
            password_hash=credential,
            auth_provider=identity.provider,
        )
        try:
            account = await asyncio.wait_for(self.users.create(new_account), bound)
        except EmailAlreadyExistsError:
            # A concurrent callback for the same email created it first
            account = await asyncio.wait_for(self.users.get_by_email(email), bound)
            if account is None:
                return Err(ErrorKind.ACCOUNT_CREATION_FAILED, "Could not create account")
            return Ok(account)
        except asyncio.TimeoutError:
            raise
        except Exception as e:
            logger.error(
                "oauth_account_creation_failed",
                provider=identity.provider,
                error=str(e),
                exc_info=True,
            )
            return Err(ErrorKind.ACCOUNT_CREATION_FAILED, "Could not create account")

        logger.info(
            "oauth_account_provisioned",
            account_id=str(account.id),
            provider=identity.provider,
        )
        return Ok(account)


def _account_name(display_name: str, email: str) -> str:
    """Fit a provider display name into the account name column.

    Falls back to the email local part, then the whole email, when the
    display name is too short once trimmed.
    """
    for candidate in (display_name, email.split("@")[0], email):
        name = candidate.strip()[:NAME_MAX_LENGTH].strip()
        if len(name) >= NAME_MIN_LENGTH:
            return name
    return email[:NAME_MAX_LENGTH]
