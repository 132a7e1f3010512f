"""Persistence for refresh token records.

Two implementations share the ``RefreshTokenStore`` contract: Postgres for
deployments and an in-process store for tests and single-process
development. Both make ``mark_revoked_and_link`` a compare-and-set so that a
token can be rotated at most once, whatever the number of concurrent
callers or service instances.
"""

import asyncio
from datetime import datetime
from typing import Iterable, Mapping, Optional, Protocol
from uuid import UUID

import asyncpg
import structlog

from session_auth.errors import DuplicateTokenError
from session_auth.models.user import RefreshToken, digest_token_value

logger = structlog.get_logger(__name__)


class RefreshTokenStore(Protocol):
    async def insert(self, token: RefreshToken) -> None: ...

    async def find_by_value(self, value: str) -> Optional[RefreshToken]: ...

    async def find_by_id(self, token_id: UUID) -> Optional[RefreshToken]: ...

    async def mark_revoked(self, value: str, now: datetime) -> bool: ...

    async def mark_revoked_and_link(
        self, old_value: str, new_token: RefreshToken, now: datetime
    ) -> bool: ...

    async def revoke_ids(self, token_ids: Iterable[UUID], now: datetime) -> int: ...

    async def revoke_all_for_account(self, account_id: UUID, now: datetime) -> int: ...


_COLUMNS = (
    "id, account_id, token_hash, access_jti, created_at, expires_at, "
    "revoked_at, replaced_by"
)


def _row_to_refresh_token(row: Mapping) -> RefreshToken:
    return RefreshToken(
        id=row["id"],
        account_id=row["account_id"],
        token_hash=row["token_hash"],
        access_jti=row["access_jti"],
        created_at=row["created_at"],
        expires_at=row["expires_at"],
        revoked_at=row["revoked_at"],
        replaced_by=row["replaced_by"],
    )


class _RotationLost(Exception):
    """Rolls back a rotation whose conditional revoke matched no row."""


class PostgresRefreshTokenStore:
    """Refresh token records in the ``refresh_tokens`` table."""

    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    async def insert(self, token: RefreshToken) -> None:
        async with self._pool.acquire() as conn:
            await self._insert(conn, token)

    async def _insert(self, conn, token: RefreshToken) -> None:
        try:
            await conn.execute(
                """
                INSERT INTO refresh_tokens (id, account_id, token_hash, access_jti, created_at, expires_at)
                VALUES ($1, $2, $3, $4, $5, $6)
                """,
                token.id,
                token.account_id,
                token.token_hash,
                token.access_jti,
                token.created_at,
                token.expires_at,
            )
        except asyncpg.UniqueViolationError as e:
            raise DuplicateTokenError(str(token.id)) from e

    async def find_by_value(self, value: str) -> Optional[RefreshToken]:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM refresh_tokens WHERE token_hash = $1",
                digest_token_value(value),
            )
        return _row_to_refresh_token(row) if row is not None else None

    async def find_by_id(self, token_id: UUID) -> Optional[RefreshToken]:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM refresh_tokens WHERE id = $1",
                token_id,
            )
        return _row_to_refresh_token(row) if row is not None else None

    async def mark_revoked(self, value: str, now: datetime) -> bool:
        async with self._pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE refresh_tokens
                SET revoked_at = $1
                WHERE token_hash = $2 AND revoked_at IS NULL
                """,
                now,
                digest_token_value(value),
            )
        return _affected(result) > 0

    async def mark_revoked_and_link(
        self, old_value: str, new_token: RefreshToken, now: datetime
    ) -> bool:
        """Revoke the old token and insert its successor in one transaction.

        Returns False, with nothing written, if the old token was already
        revoked, expired, or belongs to a different account.
        """
        try:
            async with self._pool.acquire() as conn:
                async with conn.transaction():
                    await self._insert(conn, new_token)
                    row = await conn.fetchrow(
                        """
                        UPDATE refresh_tokens
                        SET revoked_at = $1, replaced_by = $2
                        WHERE token_hash = $3
                          AND account_id = $4
                          AND revoked_at IS NULL
                          AND expires_at > $1
                        RETURNING id
                        """,
                        now,
                        new_token.id,
                        digest_token_value(old_value),
                        new_token.account_id,
                    )
                    if row is None:
                        raise _RotationLost()
        except _RotationLost:
            return False
        return True

    async def revoke_ids(self, token_ids: Iterable[UUID], now: datetime) -> int:
        ids = list(token_ids)
        if not ids:
            return 0
        async with self._pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE refresh_tokens
                SET revoked_at = $1
                WHERE id = ANY($2::uuid[]) AND revoked_at IS NULL
                """,
                now,
                ids,
            )
        return _affected(result)

    async def revoke_all_for_account(self, account_id: UUID, now: datetime) -> int:
        async with self._pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE refresh_tokens
                SET revoked_at = $1
                WHERE account_id = $2 AND revoked_at IS NULL
                """,
                now,
                account_id,
            )
        return _affected(result)


def _affected(status: str) -> int:
    """Row count from an asyncpg command status such as ``UPDATE 3``."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (AttributeError, ValueError):
        return 0


class InMemoryRefreshTokenStore:
    """Process-local refresh token records.

    All state lives on the instance; create one per application and pass it
    to the services that need it.
    """

    def __init__(self):
        self._by_hash: dict[str, RefreshToken] = {}
        self._by_id: dict[UUID, RefreshToken] = {}
        self._lock = asyncio.Lock()

    async def insert(self, token: RefreshToken) -> None:
        async with self._lock:
            self._insert(token)

    def _insert(self, token: RefreshToken) -> None:
        if token.token_hash in self._by_hash or token.id in self._by_id:
            raise DuplicateTokenError(str(token.id))
        stored = token.model_copy()
        self._by_hash[stored.token_hash] = stored
        self._by_id[stored.id] = stored

    async def find_by_value(self, value: str) -> Optional[RefreshToken]:
        async with self._lock:
            token = self._by_hash.get(digest_token_value(value))
            return token.model_copy() if token is not None else None

    async def find_by_id(self, token_id: UUID) -> Optional[RefreshToken]:
        async with self._lock:
            token = self._by_id.get(token_id)
            return token.model_copy() if token is not None else None

    async def mark_revoked(self, value: str, now: datetime) -> bool:
        async with self._lock:
            token = self._by_hash.get(digest_token_value(value))
            if token is None or token.revoked:
                return False
            token.revoked_at = now
            return True

    async def mark_revoked_and_link(
        self, old_value: str, new_token: RefreshToken, now: datetime
    ) -> bool:
        async with self._lock:
            old = self._by_hash.get(digest_token_value(old_value))
            if (
                old is None
                or old.account_id != new_token.account_id
                or not old.is_active(now)
            ):
                return False
            self._insert(new_token)
            old.revoked_at = now
            old.replaced_by = new_token.id
            return True

    async def revoke_ids(self, token_ids: Iterable[UUID], now: datetime) -> int:
        count = 0
        async with self._lock:
            for token_id in token_ids:
                token = self._by_id.get(token_id)
                if token is not None and not token.revoked:
                    token.revoked_at = now
                    count += 1
        return count

    async def revoke_all_for_account(self, account_id: UUID, now: datetime) -> int:
        count = 0
        async with self._lock:
            for token in self._by_id.values():
                if token.account_id == account_id and not token.revoked:
                    token.revoked_at = now
                    count += 1
        return count
