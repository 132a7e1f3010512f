"""Auth request and response models with validation."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator

from session_auth.models.user import NAME_MAX_LENGTH, NAME_MIN_LENGTH, Account


class LoginRequest(BaseModel):
    """Login credentials for authentication.

    Attributes:
        email: Account email (matched case-insensitively)
        password: Account password
    """

    email: str = Field(..., min_length=1, max_length=254)
    password: str = Field(..., min_length=1)


class RegisterRequest(BaseModel):
    """New account registration.

    Format rules live here; password policy, confirmation and age rules are
    enforced by the session service so they apply to every caller.

    Attributes:
        name: Display name (2-50 chars)
        email: Unique email address
        age: Age in years
        password: Plain-text password
        confirm_password: Must equal password
    """

    name: str = Field(..., min_length=NAME_MIN_LENGTH, max_length=NAME_MAX_LENGTH)
    email: EmailStr
    age: int
    password: str
    confirm_password: str

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        """Ensure name is not whitespace only."""
        stripped = v.strip()
        if len(stripped) < NAME_MIN_LENGTH:
            raise ValueError("Name must be between 2 and 50 characters")
        return stripped


class RefreshRequest(BaseModel):
    """Request to exchange a token pair for a new one.

    Attributes:
        access_token: The current (possibly expired) access token
        refresh_token: The refresh token to rotate
    """

    access_token: str = Field(..., min_length=1)
    refresh_token: str = Field(..., min_length=1)


class RevokeRequest(BaseModel):
    """Request to revoke a refresh token (logout).

    Any string is accepted; an unknown or empty value revokes nothing.
    """

    refresh_token: str


class AccountSummary(BaseModel):
    """Account projection returned to callers. Never includes the credential."""

    id: UUID
    name: str
    email: str
    age: int
    is_active: bool
    created_at: datetime

    @classmethod
    def from_account(cls, account: Account) -> "AccountSummary":
        return cls(
            id=account.id,
            name=account.name,
            email=account.email,
            age=account.age,
            is_active=account.is_active,
            created_at=account.created_at,
        )


class SessionResponse(BaseModel):
    """Successful session response with a token pair.

    Attributes:
        access_token: Short-lived JWT for API access
        refresh_token: Opaque long-lived token for obtaining new access tokens
        token_type: Always "bearer"
        expires_in: Access token lifetime in seconds
        access_token_expires_at: Access token expiry instant (UTC)
        refresh_token_expires_at: Refresh token expiry instant (UTC)
        user: The authenticated account
    """

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = Field(ge=0, description="Access token lifetime in seconds")
    access_token_expires_at: datetime
    refresh_token_expires_at: datetime
    user: AccountSummary


class ErrorResponse(BaseModel):
    """Error body returned by every endpoint.

    Attributes:
        error: Error kind (e.g. "invalid_credentials")
        detail: Human-readable explanation, free of internal detail
        correlation_id: Request tracking ID
    """

    error: str
    detail: str
    correlation_id: Optional[str] = None


class OAuthProviderInfo(BaseModel):
    """An OAuth provider available for sign-in."""

    id: str
    name: str
    authorize_url: str


class OAuthAuthorizeResponse(BaseModel):
    """Where to send the user to start an OAuth sign-in."""

    provider: str
    authorization_url: str
    state: str
