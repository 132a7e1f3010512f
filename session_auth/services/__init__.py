"""Services package exports."""

from session_auth.services.auth_session_service import AuthSessionService
from session_auth.services.identity_service import IdentityService
from session_auth.services.logging_service import configure_logging, get_logger
from session_auth.services.oauth_service import OAuthService
from session_auth.services.password_service import PasswordService
from session_auth.services.refresh_token_service import RefreshTokenService
from session_auth.services.token_service import TokenService

__all__ = [
    "AuthSessionService",
    "IdentityService",
    "OAuthService",
    "PasswordService",
    "RefreshTokenService",
    "TokenService",
    "configure_logging",
    "get_logger",
]
