"""Account persistence used by the session services.

Only the narrow slice of account management the session flows need:
lookup by email or id, and creation.
"""

import asyncio
from datetime import datetime, timezone
from typing import Mapping, Optional, Protocol
from uuid import UUID, uuid4

import asyncpg
import structlog

from session_auth.errors import EmailAlreadyExistsError
from session_auth.models.user import Account, NewAccount

logger = structlog.get_logger(__name__)


class UserStore(Protocol):
    async def get_by_email(self, email: str) -> Optional[Account]: ...

    async def get_by_id(self, account_id: UUID) -> Optional[Account]: ...

    async def create(self, new_account: NewAccount) -> Account: ...


_COLUMNS = "id, name, email, age, password_hash, auth_provider, is_active, created_at"


def _row_to_account(row: Mapping) -> Account:
    return Account(
        id=row["id"],
        name=row["name"],
        email=row["email"],
        age=row["age"],
        password_hash=row["password_hash"],
        auth_provider=row["auth_provider"],
        is_active=row["is_active"],
        created_at=row["created_at"],
    )


class PostgresUserStore:
    """Accounts in the ``accounts`` table."""

    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    async def get_by_email(self, email: str) -> Optional[Account]:
        """Get the active account for an email (case-insensitive).

        Args:
            email: Email to look up

        Returns:
            Account or None if no active account uses the email
        """
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {_COLUMNS}
                FROM accounts
                WHERE LOWER(email) = LOWER($1) AND is_active
                """,
                email,
            )
        return _row_to_account(row) if row is not None else None

    async def get_by_id(self, account_id: UUID) -> Optional[Account]:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM accounts WHERE id = $1",
                account_id,
            )
        return _row_to_account(row) if row is not None else None

    async def create(self, new_account: NewAccount) -> Account:
        """Insert a new active account.

        Raises:
            EmailAlreadyExistsError: If an active account already uses the email
        """
        account = Account(
            id=uuid4(),
            created_at=datetime.now(timezone.utc),
            is_active=True,
            **new_account.model_dump(),
        )
        try:
            async with self._pool.acquire() as conn:
                await conn.execute(
                    """
                    INSERT INTO accounts (id, name, email, age, password_hash, auth_provider, is_active, created_at)
                    VALUES ($1, $2, $3, $4, $5, $6, TRUE, $7)
                    """,
                    account.id,
                    account.name,
                    account.email,
                    account.age,
                    account.password_hash,
                    account.auth_provider,
                    account.created_at,
                )
        except asyncpg.UniqueViolationError as e:
            raise EmailAlreadyExistsError(new_account.email) from e

        logger.info(
            "account_created",
            account_id=str(account.id),
            auth_provider=account.auth_provider,
        )
        return account


class InMemoryUserStore:
    """Process-local accounts, for tests and single-process development."""

    def __init__(self):
        self._accounts: dict[UUID, Account] = {}
        self._lock = asyncio.Lock()

    async def get_by_email(self, email: str) -> Optional[Account]:
        wanted = email.lower()
        async with self._lock:
            for account in self._accounts.values():
                if account.is_active and account.email.lower() == wanted:
                    return account.model_copy()
        return None

    async def get_by_id(self, account_id: UUID) -> Optional[Account]:
        async with self._lock:
            account = self._accounts.get(account_id)
            return account.model_copy() if account is not None else None

    async def create(self, new_account: NewAccount) -> Account:
        wanted = new_account.email.lower()
        async with self._lock:
            if any(
                a.is_active and a.email.lower() == wanted
                for a in self._accounts.values()
            ):
                raise EmailAlreadyExistsError(new_account.email)
            account = Account(
                id=uuid4(),
                created_at=datetime.now(timezone.utc),
                is_active=True,
                **new_account.model_dump(),
            )
            self._accounts[account.id] = account
        logger.info(
            "account_created",
            account_id=str(account.id),
            auth_provider=account.auth_provider,
        )
        return account.model_copy()

    async def deactivate(self, account_id: UUID) -> None:
        """Mark an account inactive (account management lives elsewhere)."""
        async with self._lock:
            account = self._accounts.get(account_id)
            if account is not None:
                account.is_active = False
