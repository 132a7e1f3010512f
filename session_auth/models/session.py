"""Internal token and identity models passed between the session services."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel

from session_auth.models.user import Account, RefreshToken


class AccessTokenClaims(BaseModel):
    """Claims carried by an access token. Derived, never persisted."""

    sub: UUID
    email: str
    name: str
    jti: str
    iat: datetime
    exp: datetime


class IssuedAccessToken(BaseModel):
    """A freshly signed access token and the identifiers embedded in it."""

    token: str
    jti: str
    issued_at: datetime
    expires_at: datetime

    @property
    def expires_in(self) -> int:
        """Lifetime in whole seconds."""
        return int((self.expires_at - self.issued_at).total_seconds())


class IssuedRefreshToken(BaseModel):
    """A freshly generated refresh token.

    ``value`` is the only copy of the raw token; the stored record holds its
    digest.
    """

    value: str
    record: RefreshToken

    @property
    def expires_at(self) -> datetime:
        return self.record.expires_at


class SessionTokens(BaseModel):
    """Everything a session-establishing operation hands back to the caller."""

    access_token: IssuedAccessToken
    refresh_token: IssuedRefreshToken
    account: Account


class OAuthIdentity(BaseModel):
    """An identity asserted by an external provider after it verified the user."""

    provider: str
    email: str
    display_name: str
