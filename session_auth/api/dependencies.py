"""FastAPI dependencies for the session services and bearer authentication."""

from typing import Optional

from fastapi import Depends, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from session_auth.api.errors import SessionHTTPError
from session_auth.errors import Err, ErrorKind
from session_auth.models.user import Account
from session_auth.services.auth_session_service import AuthSessionService
from session_auth.services.oauth_service import OAuthService

bearer_scheme = HTTPBearer(auto_error=False)


def get_session_service(request: Request) -> AuthSessionService:
    """The session service built at startup."""
    return request.app.state.sessions


def get_oauth_service(request: Request) -> OAuthService:
    return request.app.state.oauth


async def get_current_account(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    sessions: AuthSessionService = Depends(get_session_service),
) -> Account:
    """Extract and validate the current account from a JWT Bearer token.

    Args:
        credentials: Bearer token from Authorization header
        sessions: Session service

    Returns:
        Authenticated Account

    Raises:
        SessionHTTPError 401: If the token is missing, invalid, expired, or the
            account is not found/inactive
    """
    if credentials is None:
        raise SessionHTTPError(
            status.HTTP_401_UNAUTHORIZED,
            ErrorKind.UNAUTHORIZED.value,
            "Missing bearer token",
        )

    result = await sessions.current_user(credentials.credentials)
    if isinstance(result, Err):
        raise SessionHTTPError.from_err(result)
    return result.value
