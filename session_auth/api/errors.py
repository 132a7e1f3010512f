"""Mapping of service errors onto HTTP responses."""

from typing import Optional

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse

from session_auth.errors import Err, ErrorKind, TokenErrorKind
from session_auth.models.auth import ErrorResponse

STATUS_BY_KIND = {
    ErrorKind.INVALID_CREDENTIALS: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.INVALID_TOKEN: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.BUSINESS_RULE_VIOLATION: 422,
    ErrorKind.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    ErrorKind.SERVICE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.ROTATION_OUTCOME_UNKNOWN: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.ACCOUNT_CREATION_FAILED: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorKind.CRYPTO_FAILURE: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorKind.INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class SessionHTTPError(HTTPException):
    """HTTPException carrying the error kind and correlation id of a failed result."""

    def __init__(
        self,
        status_code: int,
        error: str,
        detail: str,
        correlation_id: Optional[str] = None,
    ):
        headers = None
        if status_code == status.HTTP_401_UNAUTHORIZED:
            headers = {"WWW-Authenticate": "Bearer"}
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error = error
        self.correlation_id = correlation_id

    @classmethod
    def from_err(cls, err: Err) -> "SessionHTTPError":
        if isinstance(err.kind, TokenErrorKind):
            return cls(status.HTTP_401_UNAUTHORIZED, ErrorKind.UNAUTHORIZED.value, err.message)
        return cls(
            STATUS_BY_KIND.get(err.kind, status.HTTP_500_INTERNAL_SERVER_ERROR),
            err.kind.value,
            err.message,
            err.correlation_id,
        )


async def session_http_error_handler(
    request: Request, exc: SessionHTTPError
) -> JSONResponse:
    """Render a SessionHTTPError as the standard error body."""
    correlation_id = exc.correlation_id or getattr(request.state, "correlation_id", None)
    content = ErrorResponse(
        error=exc.error, detail=exc.detail, correlation_id=correlation_id
    ).model_dump()
    headers = dict(exc.headers or {})
    if correlation_id:
        headers["X-Correlation-Id"] = correlation_id
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)
