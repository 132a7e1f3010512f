"""Authentication API endpoints."""

from fastapi import APIRouter, Depends, status
import structlog

from session_auth.api.dependencies import get_current_account, get_session_service
from session_auth.api.errors import SessionHTTPError
from session_auth.errors import Err, Result
from session_auth.models.auth import (
    AccountSummary,
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    RevokeRequest,
    SessionResponse,
)
from session_auth.models.session import SessionTokens
from session_auth.models.user import Account
from session_auth.services.auth_session_service import AuthSessionService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])


def session_response(result: Result[SessionTokens]) -> SessionResponse:
    """Convert a session result into the response body, or raise its error."""
    if isinstance(result, Err):
        raise SessionHTTPError.from_err(result)

    tokens = result.value
    return SessionResponse(
        access_token=tokens.access_token.token,
        refresh_token=tokens.refresh_token.value,
        token_type="bearer",
        expires_in=tokens.access_token.expires_in,
        access_token_expires_at=tokens.access_token.expires_at,
        refresh_token_expires_at=tokens.refresh_token.expires_at,
        user=AccountSummary.from_account(tokens.account),
    )


@router.post("/login")
async def login(
    request: LoginRequest,
    sessions: AuthSessionService = Depends(get_session_service),
) -> SessionResponse:
    """Login with email and password.

    Args:
        request: Login credentials

    Returns:
        SessionResponse with tokens and account info

    Raises:
        SessionHTTPError 401: If the credentials are invalid or the account is disabled
    """
    return session_response(await sessions.login(request.email, request.password))


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    request: RegisterRequest,
    sessions: AuthSessionService = Depends(get_session_service),
) -> SessionResponse:
    """Register a new account and start a session.

    Raises:
        SessionHTTPError 400: Password mismatch or weak password
        SessionHTTPError 409: Email already registered
        SessionHTTPError 422: Age outside the allowed range
    """
    return session_response(await sessions.register(request))


@router.post("/refresh")
async def refresh(
    request: RefreshRequest,
    sessions: AuthSessionService = Depends(get_session_service),
) -> SessionResponse:
    """Exchange an access/refresh token pair for a new pair.

    Performs token rotation: the old refresh token is revoked and a new
    pair is issued. The access token may be expired but must carry a valid
    signature.

    Raises:
        SessionHTTPError 401: If either token is invalid or the refresh token was already used
        SessionHTTPError 503: If the rotation outcome is unknown but retrying is safe
    """
    result = await sessions.refresh(request.access_token, request.refresh_token)
    return session_response(result)


@router.post("/revoke")
async def revoke(
    request: RevokeRequest,
    sessions: AuthSessionService = Depends(get_session_service),
) -> dict:
    """Revoke a refresh token (logout). Always succeeds."""
    await sessions.revoke(request.refresh_token)
    return {"message": "Token revoked successfully"}


@router.get("/me")
async def get_me(current_account: Account = Depends(get_current_account)) -> AccountSummary:
    """Get current authenticated account info.

    Args:
        current_account: Account from the bearer access token

    Returns:
        AccountSummary of the current account
    """
    return AccountSummary.from_account(current_account)
