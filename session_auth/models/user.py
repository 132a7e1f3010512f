"""Account and refresh token models."""

import hashlib
from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel

LOCAL_PROVIDER = "local"
NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 50


class Account(BaseModel):
    """A registered account.

    ``password_hash`` is the credential handle: a bcrypt hash for local
    accounts, or the hash of a discarded random secret for accounts
    provisioned through an OAuth provider.
    """

    id: UUID
    name: str
    email: str
    age: int
    password_hash: str
    auth_provider: str = LOCAL_PROVIDER
    is_active: bool = True
    created_at: datetime


class NewAccount(BaseModel):
    """Fields needed to create an account; the store assigns id and timestamp."""

    name: str
    email: str
    age: int
    password_hash: str
    auth_provider: str = LOCAL_PROVIDER


class RefreshToken(BaseModel):
    """Persisted refresh token record.

    The raw token value is never stored, only its SHA-256 digest.
    """

    id: UUID
    account_id: UUID
    token_hash: str
    access_jti: Optional[str] = None
    created_at: datetime
    expires_at: datetime
    revoked_at: Optional[datetime] = None
    replaced_by: Optional[UUID] = None

    @property
    def revoked(self) -> bool:
        return self.revoked_at is not None

    def is_active(self, now: datetime) -> bool:
        """A refresh token is usable iff it is not revoked and not yet expired."""
        return not self.revoked and now < self.expires_at


def digest_token_value(value: str) -> str:
    """Return the lookup digest for a raw refresh token value."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()
