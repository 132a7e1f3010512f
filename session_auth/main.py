"""FastAPI application initialization."""

from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional
from uuid import uuid4

from dotenv import load_dotenv

# Load environment variables before anything else
load_dotenv()

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from session_auth.api.auth import router as auth_router
from session_auth.api.errors import SessionHTTPError, session_http_error_handler
from session_auth.api.middleware import CorrelationIdMiddleware
from session_auth.api.oauth import router as oauth_router
from session_auth.config import Settings, get_settings
from session_auth.database import Database
from session_auth.services.auth_session_service import AuthSessionService
from session_auth.services.identity_service import IdentityService
from session_auth.services.logging_service import configure_logging, get_logger
from session_auth.services.oauth_service import OAuthService
from session_auth.services.password_service import PasswordService
from session_auth.services.refresh_token_service import RefreshTokenService
from session_auth.services.refresh_token_store import (
    InMemoryRefreshTokenStore,
    PostgresRefreshTokenStore,
    RefreshTokenStore,
)
from session_auth.services.token_service import TokenService
from session_auth.services.user_store import (
    InMemoryUserStore,
    PostgresUserStore,
    UserStore,
)


def build_session_service(
    settings: Settings,
    users: UserStore,
    refresh_store: RefreshTokenStore,
) -> AuthSessionService:
    """Wire the session components around the given stores."""
    passwords = PasswordService(rounds=settings.bcrypt_rounds)
    tokens = TokenService(
        settings.jwt_secret,
        issuer=settings.jwt_issuer,
        audience=settings.jwt_audience,
        ttl=timedelta(minutes=settings.access_token_expire_minutes),
    )
    refresh_tokens = RefreshTokenService(
        refresh_store,
        ttl=timedelta(days=settings.refresh_token_expire_days),
        reuse_policy=settings.refresh_reuse_policy,
        timeout=settings.store_timeout_seconds,
    )
    identities = IdentityService(
        users,
        passwords,
        default_age=settings.oauth_default_age,
        timeout=settings.store_timeout_seconds,
    )
    return AuthSessionService(
        users=users,
        passwords=passwords,
        tokens=tokens,
        refresh_tokens=refresh_tokens,
        identities=identities,
        min_age=settings.min_account_age,
        max_age=settings.max_account_age,
        timeout=settings.store_timeout_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    # Startup
    settings: Settings = app.state.settings
    configure_logging(settings.log_level)
    logger = get_logger("main")

    database: Optional[Database] = None
    if settings.store_backend == "postgres":
        database = Database(settings.postgres_url)
        await database.connect()
        await database.run_migrations()
        users: UserStore = PostgresUserStore(database.pool)
        refresh_store: RefreshTokenStore = PostgresRefreshTokenStore(database.pool)
        logger.info("database_initialized")
    else:
        users = InMemoryUserStore()
        refresh_store = InMemoryRefreshTokenStore()
        logger.warning("in_memory_store_enabled", note="State is lost on restart")

    app.state.database = database
    app.state.sessions = build_session_service(settings, users, refresh_store)
    app.state.oauth = OAuthService(settings)

    logger.info(
        "application_started",
        store_backend=settings.store_backend,
        log_level=settings.log_level,
        oauth_providers=app.state.oauth.configured_providers(),
    )

    yield

    # Shutdown
    if database is not None:
        await database.close()

    logger.info("application_shutdown")


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle Pydantic validation errors with the standard error body.

    Returns 400 Bad Request naming the first failing field.
    """
    correlation_id = getattr(request.state, "correlation_id", None) or str(uuid4())
    logger = structlog.get_logger()

    errors = exc.errors()
    if errors:
        first_error = errors[0]
        field = ".".join(str(loc) for loc in first_error.get("loc", ["unknown"]))
        message = first_error.get("msg", "Validation failed")
        detail = f"Field '{field}': {message}"
    else:
        detail = "Request validation failed"

    logger.warning(
        "validation_error",
        correlation_id=correlation_id,
        detail=detail,
    )

    return JSONResponse(
        status_code=400,
        content={
            "error": "validation_error",
            "detail": detail,
            "correlation_id": correlation_id,
        },
        headers={"X-Correlation-Id": correlation_id},
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort handler: log the failure in full, return only its correlation id."""
    correlation_id = getattr(request.state, "correlation_id", None) or str(uuid4())
    logger = structlog.get_logger()
    logger.error(
        "unhandled_exception",
        correlation_id=correlation_id,
        path=request.url.path,
        error_type=type(exc).__name__,
        exc_info=exc,
    )

    detail = "An internal error occurred"
    if request.app.state.settings.expose_internal_errors:
        detail = f"{type(exc).__name__}: {exc}"

    return JSONResponse(
        status_code=500,
        content={
            "error": "internal",
            "detail": detail,
            "correlation_id": correlation_id,
        },
        headers={"X-Correlation-Id": correlation_id},
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Create the application. Components are built in the lifespan."""
    app = FastAPI(
        title="Session Auth",
        description="Access token issuance, refresh token rotation and OAuth sign-in",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings or get_settings()

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SessionHTTPError, session_http_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # CORS middleware for browser clients
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app.state.settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Correlation ID middleware for request tracking and observability
    app.add_middleware(CorrelationIdMiddleware)

    app.include_router(auth_router)
    app.include_router(oauth_router)

    @app.get("/health")
    async def health(request: Request) -> dict:
        """Health check endpoint."""
        database: Optional[Database] = request.app.state.database
        if database is not None and not await database.health_check():
            return JSONResponse(status_code=503, content={"status": "degraded"})
        return {"status": "ok"}

    return app


app = create_app()
