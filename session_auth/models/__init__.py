"""Models package exports."""

from session_auth.models.auth import (
    AccountSummary,
    ErrorResponse,
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    RevokeRequest,
    SessionResponse,
)
from session_auth.models.session import (
    AccessTokenClaims,
    IssuedAccessToken,
    IssuedRefreshToken,
    OAuthIdentity,
    SessionTokens,
)
from session_auth.models.user import Account, NewAccount, RefreshToken

__all__ = [
    "AccessTokenClaims",
    "Account",
    "AccountSummary",
    "ErrorResponse",
    "IssuedAccessToken",
    "IssuedRefreshToken",
    "LoginRequest",
    "NewAccount",
    "OAuthIdentity",
    "RefreshRequest",
    "RefreshToken",
    "RegisterRequest",
    "RevokeRequest",
    "SessionResponse",
    "SessionTokens",
]
