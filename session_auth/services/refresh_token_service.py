"""Refresh token lifecycle: issuance, single-use rotation and revocation."""

import asyncio
import secrets
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Literal, Optional, TypeVar
from uuid import UUID, uuid4

import structlog

from session_auth.errors import CryptoFailure, Err, ErrorKind, Ok, Result
from session_auth.models.session import IssuedRefreshToken
from session_auth.models.user import RefreshToken, digest_token_value
from session_auth.services.refresh_token_store import RefreshTokenStore
from session_auth.services.token_service import utc_now

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# 64 random bytes, URL-safe base64 encoded
REFRESH_TOKEN_BYTES = 64

# Upper bound on descendants walked when revoking a reused token's chain
MAX_CHAIN_LENGTH = 10_000

ReusePolicy = Literal["reject", "revoke_chain", "revoke_all"]


class RefreshTokenService:
    """Service for the refresh token lifecycle.

    Rotation is never retried here: when the store times out mid-rotation the
    outcome is reported as unknown and the caller decides what to do.
    """

    def __init__(
        self,
        store: RefreshTokenStore,
        *,
        ttl: timedelta = timedelta(days=7),
        reuse_policy: ReusePolicy = "revoke_chain",
        timeout: float = 5.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.ttl = ttl
        self.reuse_policy = reuse_policy
        self.timeout = timeout
        self._clock = clock

    async def _bounded(
        self, operation: Awaitable[T], timeout: Optional[float]
    ) -> T:
        return await asyncio.wait_for(
            operation, timeout if timeout is not None else self.timeout
        )

    def _new_token(
        self, account_id: UUID, access_jti: Optional[str], now: datetime
    ) -> IssuedRefreshToken:
        try:
            value = secrets.token_urlsafe(REFRESH_TOKEN_BYTES)
        except OSError as e:
            logger.error("refresh_token_entropy_failed", error=str(e))
            raise CryptoFailure("Entropy source unavailable") from e
        record = RefreshToken(
            id=uuid4(),
            account_id=account_id,
            token_hash=digest_token_value(value),
            access_jti=access_jti,
            created_at=now,
            expires_at=now + self.ttl,
        )
        return IssuedRefreshToken(value=value, record=record)

    async def issue(
        self,
        account_id: UUID,
        *,
        access_jti: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> IssuedRefreshToken:
        """Generate a refresh token and store it as active.

        Args:
            account_id: Owning account
            access_jti: jti of the access token issued alongside
            timeout: Store call bound in seconds (defaults to the service's)

        Returns:
            The raw token value with its stored record

        Raises:
            CryptoFailure: If no random bytes are available
            asyncio.TimeoutError: If the store does not answer in time
        """
        issued = self._new_token(account_id, access_jti, self._clock())
        await self._bounded(self.store.insert(issued.record), timeout)

        logger.info(
            "refresh_token_created",
            account_id=str(account_id),
            token_id=str(issued.record.id),
            access_jti=access_jti,
            expires_at=issued.expires_at.isoformat(),
        )
        return issued

    async def find(
        self, value: str, *, timeout: Optional[float] = None
    ) -> Optional[RefreshToken]:
        """Look up the stored record for a raw token value."""
        return await self._bounded(self.store.find_by_value(value), timeout)

    async def is_valid(self, value: str, *, timeout: Optional[float] = None) -> bool:
        """True iff the token exists, is not revoked, and is not expired."""
        record = await self.find(value, timeout=timeout)
        return record is not None and record.is_active(self._clock())

    async def rotate(
        self,
        old_value: str,
        account_id: UUID,
        *,
        access_jti: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Result[IssuedRefreshToken]:
        """Consume a refresh token and issue its successor.

        The old token is revoked and the new one stored in a single atomic
        store operation; of any number of concurrent rotations of the same
        token, exactly one succeeds.

        Args:
            old_value: Raw refresh token being exchanged
            account_id: Account the caller claims the token belongs to
            access_jti: jti of the access token issued alongside the new token
            timeout: Store call bound in seconds

        Returns:
            Ok(IssuedRefreshToken), Err(INVALID_TOKEN) if the old token is
            unknown, revoked, expired, owned by another account or was
            consumed concurrently, or Err(ROTATION_OUTCOME_UNKNOWN) if the
            store timed out during the swap.
        """
        now = self._clock()
        record = await self._bounded(self.store.find_by_value(old_value), timeout)

        if record is None:
            logger.warning("refresh_token_not_found", account_id=str(account_id))
            return Err(ErrorKind.INVALID_TOKEN, "Refresh token is not recognised")

        if record.account_id != account_id:
            logger.warning(
                "refresh_token_account_mismatch",
                token_id=str(record.id),
                account_id=str(account_id),
            )
            return Err(ErrorKind.INVALID_TOKEN, "Refresh token is not recognised")

        if record.revoked:
            if record.replaced_by is not None and now < record.expires_at:
                await self._handle_reuse(record, now, timeout)
            else:
                logger.warning("refresh_token_revoked", token_id=str(record.id))
            return Err(ErrorKind.INVALID_TOKEN, "Refresh token has been revoked")

        if now >= record.expires_at:
            logger.warning("refresh_token_expired", token_id=str(record.id))
            return Err(ErrorKind.INVALID_TOKEN, "Refresh token has expired")

        successor = self._new_token(account_id, access_jti, now)
        try:
            won = await self._bounded(
                self.store.mark_revoked_and_link(old_value, successor.record, now),
                timeout,
            )
        except asyncio.TimeoutError:
            logger.error(
                "refresh_token_rotation_timeout",
                token_id=str(record.id),
                successor_id=str(successor.record.id),
            )
            return Err(
                ErrorKind.ROTATION_OUTCOME_UNKNOWN,
                "Refresh token rotation did not complete in time",
            )

        if not won:
            logger.warning("refresh_token_rotation_lost", token_id=str(record.id))
            return Err(ErrorKind.INVALID_TOKEN, "Refresh token has already been used")

        logger.info(
            "refresh_token_rotated",
            account_id=str(account_id),
            token_id=str(record.id),
            successor_id=str(successor.record.id),
        )
        return Ok(successor)

    async def _handle_reuse(
        self, record: RefreshToken, now: datetime, timeout: Optional[float]
    ) -> None:
        """Apply the reuse policy to a rotated token that was presented again."""
        logger.warning(
            "refresh_token_reuse_detected",
            account_id=str(record.account_id),
            token_id=str(record.id),
            policy=self.reuse_policy,
        )
        if self.reuse_policy == "revoke_all":
            revoked = await self.revoke_all(record.account_id, timeout=timeout)
        elif self.reuse_policy == "revoke_chain":
            descendants = await self._descendants(record, timeout)
            revoked = await self._bounded(
                self.store.revoke_ids(descendants, now), timeout
            )
        else:
            return
        logger.warning(
            "refresh_token_chain_revoked",
            account_id=str(record.account_id),
            revoked=revoked,
        )

    async def _descendants(
        self, record: RefreshToken, timeout: Optional[float]
    ) -> list[UUID]:
        chain: list[UUID] = []
        next_id = record.replaced_by
        while next_id is not None and len(chain) < MAX_CHAIN_LENGTH:
            if next_id in chain:
                break
            chain.append(next_id)
            successor = await self._bounded(self.store.find_by_id(next_id), timeout)
            next_id = successor.replaced_by if successor is not None else None
        return chain

    async def revoke(self, value: str, *, timeout: Optional[float] = None) -> None:
        """Revoke a refresh token. Revoking an unknown or revoked token is a no-op."""
        changed = await self._bounded(
            self.store.mark_revoked(value, self._clock()), timeout
        )
        logger.info("refresh_token_revoked", changed=changed)

    async def revoke_all(
        self, account_id: UUID, *, timeout: Optional[float] = None
    ) -> int:
        """Revoke every active refresh token of an account.

        Returns:
            Number of tokens that were revoked by this call
        """
        count = await self._bounded(
            self.store.revoke_all_for_account(account_id, self._clock()), timeout
        )
        logger.info(
            "all_refresh_tokens_revoked",
            account_id=str(account_id),
            revoked=count,
        )
        return count
