"""OAuth provider sign-in: authorization URLs, state, and code exchange.

This is the external-identity verification step. It turns a provider's
authorization code into an ``OAuthIdentity`` and nothing else; issuing
tokens for that identity is left to the session service.
"""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from urllib.parse import urlencode

import httpx
import jwt
import structlog

from session_auth.config import Settings
from session_auth.errors import Err, ErrorKind, Ok, Result
from session_auth.models.session import OAuthIdentity
from session_auth.services.token_service import JWT_ALGORITHM, utc_now

logger = structlog.get_logger(__name__)

# OAuth provider configurations
OAUTH_PROVIDERS = {
    "google": {
        "name": "Google",
        "auth_url": "https://accounts.google.com/o/oauth2/v2/auth",
        "token_url": "https://oauth2.googleapis.com/token",
        "userinfo_url": "https://www.googleapis.com/oauth2/v2/userinfo",
        "scope": "openid email profile",
    },
    "github": {
        "name": "GitHub",
        "auth_url": "https://github.com/login/oauth/authorize",
        "token_url": "https://github.com/login/oauth/access_token",
        "userinfo_url": "https://api.github.com/user",
        "emails_url": "https://api.github.com/user/emails",
        "scope": "read:user user:email",
    },
}

STATE_TYPE = "oauth_state"


class OAuthService:
    """Drives the authorization-code flow against the configured providers."""

    def __init__(
        self,
        settings: Settings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.settings = settings
        self._transport = transport
        self._clock = clock
        self._state_audience = f"{settings.jwt_audience}:{STATE_TYPE}"

    def _credentials(self, provider: str) -> tuple[str, str]:
        if provider == "google":
            return (
                self.settings.oauth_google_client_id,
                self.settings.oauth_google_client_secret,
            )
        if provider == "github":
            return (
                self.settings.oauth_github_client_id,
                self.settings.oauth_github_client_secret,
            )
        return "", ""

    def is_configured(self, provider: str) -> bool:
        client_id, client_secret = self._credentials(provider)
        return provider in OAUTH_PROVIDERS and bool(client_id and client_secret)

    def configured_providers(self) -> list[str]:
        """Providers with credentials, in registry order."""
        return [p for p in OAUTH_PROVIDERS if self.is_configured(p)]

    def provider_name(self, provider: str) -> str:
        return OAUTH_PROVIDERS[provider]["name"]

    def issue_state(self, provider: str) -> str:
        """Sign a short-lived state value bound to the provider (CSRF protection)."""
        now = self._clock().replace(microsecond=0)
        payload = {
            "typ": STATE_TYPE,
            "provider": provider,
            "nonce": secrets.token_urlsafe(16),
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(minutes=self.settings.oauth_state_ttl_minutes)).timestamp()),
            "aud": self._state_audience,
        }
        return jwt.encode(payload, self.settings.jwt_secret, algorithm=JWT_ALGORITHM)

    def verify_state(self, provider: str, state: str) -> bool:
        """True if the state was issued by us, for this provider, and is unexpired."""
        try:
            payload = jwt.decode(
                state,
                self.settings.jwt_secret,
                algorithms=[JWT_ALGORITHM],
                audience=self._state_audience,
                options={"verify_exp": False, "verify_iat": False, "require": ["exp"]},
            )
        except jwt.InvalidTokenError as e:
            logger.warning("oauth_state_invalid", provider=provider, error=str(e))
            return False
        if payload.get("typ") != STATE_TYPE or payload.get("provider") != provider:
            logger.warning("oauth_state_mismatch", provider=provider)
            return False
        expires_at = datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc)
        if self._clock() >= expires_at:
            logger.warning("oauth_state_expired", provider=provider)
            return False
        return True

    def authorization_url(self, provider: str) -> Result[tuple[str, str]]:
        """Build the provider URL that starts sign-in.

        Returns:
            Ok((authorization_url, state)) or Err(VALIDATION_ERROR)
        """
        if not self.is_configured(provider):
            return Err(ErrorKind.VALIDATION_ERROR, f"OAuth provider {provider} is not available")
        if not self.settings.oauth_redirect_uri:
            logger.error("oauth_no_redirect_uri_configured", provider=provider)
            return Err(ErrorKind.VALIDATION_ERROR, "No OAuth redirect URI configured")

        client_id, _ = self._credentials(provider)
        state = self.issue_state(provider)
        config = OAUTH_PROVIDERS[provider]
        params = {
            "client_id": client_id,
            "redirect_uri": self.settings.oauth_redirect_uri,
            "response_type": "code",
            "scope": config["scope"],
            "state": state,
        }
        if provider == "google":
            params["prompt"] = "select_account"
        return Ok((f"{config['auth_url']}?{urlencode(params)}", state))

    async def exchange_code(
        self, provider: str, code: str, state: str
    ) -> Result[OAuthIdentity]:
        """Exchange an authorization code for the provider-verified identity.

        Returns:
            Ok(OAuthIdentity); Err(VALIDATION_ERROR) for an unavailable
            provider or an identity without email; Err(UNAUTHORIZED) for a
            bad state or a failed exchange
        """
        if not self.is_configured(provider):
            return Err(ErrorKind.VALIDATION_ERROR, f"OAuth provider {provider} is not available")
        if not self.verify_state(provider, state):
            return Err(ErrorKind.UNAUTHORIZED, "Invalid or expired OAuth state")

        client_id, client_secret = self._credentials(provider)
        config = OAUTH_PROVIDERS[provider]

        try:
            async with httpx.AsyncClient(
                timeout=self.settings.oauth_http_timeout_seconds,
                follow_redirects=False,
                transport=self._transport,
            ) as client:
                token_response = await client.post(
                    config["token_url"],
                    data={
                        "client_id": client_id,
                        "client_secret": client_secret,
                        "code": code,
                        "redirect_uri": self.settings.oauth_redirect_uri,
                        "grant_type": "authorization_code",
                    },
                    headers={"Accept": "application/json"},
                )
                token_response.raise_for_status()
                provider_token = token_response.json().get("access_token")
                if not provider_token:
                    logger.error("oauth_no_access_token", provider=provider)
                    return Err(ErrorKind.UNAUTHORIZED, f"{config['name']} authentication failed")

                headers = {"Authorization": f"Bearer {provider_token}"}
                if provider == "github":
                    headers["Accept"] = "application/vnd.github+json"

                userinfo_response = await client.get(config["userinfo_url"], headers=headers)
                userinfo_response.raise_for_status()
                userinfo = userinfo_response.json()

                email, name = _parse_userinfo(provider, userinfo)
                if provider == "github" and not email:
                    emails_response = await client.get(config["emails_url"], headers=headers)
                    if emails_response.status_code == 200:
                        email = next(
                            (
                                e.get("email")
                                for e in emails_response.json()
                                if e.get("primary") and e.get("verified")
                            ),
                            None,
                        )
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            logger.error("oauth_exchange_failed", provider=provider, error=str(e))
            return Err(ErrorKind.UNAUTHORIZED, f"{config['name']} authentication failed")

        if not email:
            logger.warning("oauth_identity_missing_email", provider=provider)
            return Err(ErrorKind.VALIDATION_ERROR, "Email claim not provided by OAuth provider")

        display_name = name or email.split("@")[0]
        logger.info("oauth_exchange_success", provider=provider)
        return Ok(OAuthIdentity(provider=provider, email=email, display_name=display_name))


def _parse_userinfo(provider: str, userinfo: dict) -> tuple[Optional[str], Optional[str]]:
    """Pull (email, display name) out of a provider's userinfo document.

    Google reports whether it verified the address (``verified_email`` on the
    v2 endpoint, ``email_verified`` on OpenID Connect); an unverified address
    is treated as absent.
    """
    if provider == "google":
        name = userinfo.get("name")
        if not name:
            name = " ".join(
                part for part in (userinfo.get("given_name"), userinfo.get("family_name")) if part
            )
        email = userinfo.get("email")
        verified = userinfo.get("verified_email", userinfo.get("email_verified"))
        if email and verified is not True:
            logger.warning("oauth_email_unverified", provider=provider)
            email = None
        return email, name or None
    if provider == "github":
        return userinfo.get("email"), userinfo.get("name") or userinfo.get("login")
    return userinfo.get("email"), userinfo.get("name")
