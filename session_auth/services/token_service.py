"""Signing and validation of JWT access tokens."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable
from uuid import UUID, uuid4

import jwt
import structlog
from pydantic import ValidationError

from session_auth.errors import Err, Ok, Result, TokenErrorKind
from session_auth.models.session import AccessTokenClaims, IssuedAccessToken

logger = structlog.get_logger(__name__)

# The only algorithm ever accepted. Tokens whose header names anything else
# (including "none") are rejected before the signature is looked at.
JWT_ALGORITHM = "HS256"

REQUIRED_CLAIMS = ["sub", "email", "name", "jti", "iat", "exp"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ValidationOptions:
    """Which checks to run on top of the signature and algorithm checks."""

    verify_expiry: bool = True
    verify_issuer: bool = True
    verify_audience: bool = True


STRICT = ValidationOptions()
# Only for the refresh flow, which needs the identity of an expired token.
IGNORE_EXPIRY = ValidationOptions(verify_expiry=False)


class TokenService:
    """Issue and validate access tokens with a single symmetric key."""

    def __init__(
        self,
        secret: str,
        *,
        issuer: str,
        audience: str,
        ttl: timedelta = timedelta(minutes=15),
        clock: Callable[[], datetime] = utc_now,
    ):
        self._secret = secret
        self.issuer = issuer
        self.audience = audience
        self.ttl = ttl
        self._clock = clock

    def issue_access_token(
        self, account_id: UUID, email: str, name: str
    ) -> IssuedAccessToken:
        """Create a signed JWT access token.

        Args:
            account_id: Account UUID (placed in 'sub' claim)
            email: Account email
            name: Account display name

        Returns:
            The encoded token with its jti and expiry
        """
        now = self._clock().replace(microsecond=0)
        expires_at = now + self.ttl
        jti = str(uuid4())
        payload = {
            "sub": str(account_id),
            "email": email,
            "name": name,
            "jti": jti,
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
            "iss": self.issuer,
            "aud": self.audience,
        }
        token = jwt.encode(payload, self._secret, algorithm=JWT_ALGORITHM)
        logger.debug(
            "access_token_issued",
            account_id=str(account_id),
            jti=jti,
            expires_at=expires_at.isoformat(),
        )
        return IssuedAccessToken(
            token=token, jti=jti, issued_at=now, expires_at=expires_at
        )

    def validate(
        self, token: str, options: ValidationOptions = STRICT
    ) -> Result[AccessTokenClaims]:
        """Verify a token and return its claims.

        The signature and the pinned algorithm are always checked; expiry,
        issuer and audience according to ``options``. A token is expired
        from the instant ``now >= exp``.

        Args:
            token: Encoded JWT string
            options: Optional checks to apply

        Returns:
            Ok(AccessTokenClaims) or Err(TokenErrorKind)
        """
        try:
            header = jwt.get_unverified_header(token)
        except jwt.InvalidTokenError:
            return Err(TokenErrorKind.MALFORMED, "Access token is malformed")

        if header.get("alg") != JWT_ALGORITHM:
            logger.warning("access_token_algorithm_rejected", alg=header.get("alg"))
            return Err(
                TokenErrorKind.ALGORITHM_MISMATCH,
                "Access token is signed with an unexpected algorithm",
            )

        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[JWT_ALGORITHM],
                audience=self.audience if options.verify_audience else None,
                issuer=self.issuer if options.verify_issuer else None,
                options={
                    # Expiry is checked below against the injected clock
                    "verify_exp": False,
                    "verify_iat": False,
                    "verify_nbf": False,
                    "verify_aud": options.verify_audience,
                    "verify_iss": options.verify_issuer,
                    "require": REQUIRED_CLAIMS,
                },
            )
        except jwt.InvalidSignatureError:
            return Err(TokenErrorKind.SIGNATURE_INVALID, "Access token signature is invalid")
        except jwt.InvalidAlgorithmError:
            return Err(
                TokenErrorKind.ALGORITHM_MISMATCH,
                "Access token is signed with an unexpected algorithm",
            )
        except (jwt.InvalidAudienceError, jwt.InvalidIssuerError) as e:
            return Err(TokenErrorKind.CLAIM_MISMATCH, f"Access token rejected: {e}")
        except jwt.InvalidTokenError as e:
            return Err(TokenErrorKind.MALFORMED, f"Access token is malformed: {e}")

        try:
            claims = AccessTokenClaims(
                sub=payload["sub"],
                email=payload["email"],
                name=payload["name"],
                jti=payload["jti"],
                iat=datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc),
                exp=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
            )
        except (ValidationError, TypeError, ValueError, OverflowError):
            return Err(TokenErrorKind.MALFORMED, "Access token claims are malformed")

        if options.verify_expiry and self._clock() >= claims.exp:
            return Err(TokenErrorKind.EXPIRED, "Access token has expired")

        return Ok(claims)
