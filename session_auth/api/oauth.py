"""OAuth sign-in endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
import structlog

from session_auth.api.auth import session_response
from session_auth.api.dependencies import get_oauth_service, get_session_service
from session_auth.api.errors import SessionHTTPError
from session_auth.errors import Err, ErrorKind
from session_auth.models.auth import (
    OAuthAuthorizeResponse,
    OAuthProviderInfo,
    SessionResponse,
)
from session_auth.services.auth_session_service import AuthSessionService
from session_auth.services.oauth_service import OAuthService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/oauth", tags=["OAuth"])


@router.get("/providers")
async def list_providers(
    oauth: OAuthService = Depends(get_oauth_service),
) -> list[OAuthProviderInfo]:
    """List the OAuth providers that are configured for sign-in."""
    return [
        OAuthProviderInfo(
            id=provider,
            name=oauth.provider_name(provider),
            authorize_url=f"/oauth/{provider}/authorize",
        )
        for provider in oauth.configured_providers()
    ]


@router.get("/{provider}/authorize")
async def authorize(
    provider: str,
    oauth: OAuthService = Depends(get_oauth_service),
) -> OAuthAuthorizeResponse:
    """Return the provider URL that starts sign-in, with its signed state.

    Raises:
        SessionHTTPError 400: If the provider is unknown or not configured
    """
    result = oauth.authorization_url(provider)
    if isinstance(result, Err):
        raise SessionHTTPError.from_err(result)
    authorization_url, state = result.value
    return OAuthAuthorizeResponse(
        provider=provider, authorization_url=authorization_url, state=state
    )


@router.get("/{provider}/callback")
async def callback(
    provider: str,
    code: Optional[str] = Query(default=None),
    state: Optional[str] = Query(default=None),
    error: Optional[str] = Query(default=None),
    oauth: OAuthService = Depends(get_oauth_service),
    sessions: AuthSessionService = Depends(get_session_service),
) -> SessionResponse:
    """Complete provider sign-in and start a session.

    The provider-verified identity is matched to an existing account by
    email, or a new account is provisioned.

    Raises:
        SessionHTTPError 400: Missing code/state, unavailable provider, or no email from provider
        SessionHTTPError 401: Provider rejected the sign-in or the state is invalid
    """
    if error:
        logger.warning("oauth_provider_error", provider=provider, error=error)
        raise SessionHTTPError(
            status.HTTP_401_UNAUTHORIZED,
            ErrorKind.UNAUTHORIZED.value,
            "OAuth authentication failed",
        )
    if not code or not state:
        raise SessionHTTPError(
            status.HTTP_400_BAD_REQUEST,
            ErrorKind.VALIDATION_ERROR.value,
            "Both code and state are required",
        )

    identity = await oauth.exchange_code(provider, code, state)
    if isinstance(identity, Err):
        raise SessionHTTPError.from_err(identity)

    return session_response(await sessions.oauth_callback(identity.value))
