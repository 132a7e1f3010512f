"""Middleware for request processing and observability."""

import re
from uuid import uuid4

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# Inbound ids are echoed into logs and headers, so only accept plain tokens
_CORRELATION_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Middleware to add correlation ID to every request.

    - Reuses a well-formed X-Correlation-Id header, else generates a UUID4
    - Stores in request.state.correlation_id
    - Binds to structlog context; internal errors quote the same id
    - Adds X-Correlation-Id response header
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request with correlation ID tracking."""
        inbound = request.headers.get("X-Correlation-Id", "")
        if _CORRELATION_ID_PATTERN.match(inbound):
            correlation_id = inbound
        else:
            correlation_id = str(uuid4())

        request.state.correlation_id = correlation_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(correlation_id=correlation_id)

        response = await call_next(request)

        response.headers["X-Correlation-Id"] = correlation_id

        return response
