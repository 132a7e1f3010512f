"""API package exports."""

from session_auth.api.auth import router as auth_router
from session_auth.api.middleware import CorrelationIdMiddleware
from session_auth.api.oauth import router as oauth_router

__all__ = ["auth_router", "oauth_router", "CorrelationIdMiddleware"]
