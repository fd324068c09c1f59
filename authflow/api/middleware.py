"""Middleware for request processing and observability."""

from uuid import uuid4

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Middleware to add correlation ID to every request.

    - Generates UUID4 per request (or uses X-Correlation-Id header if present)
    - Stores in request.state.correlation_id
    - Binds to structlog context for all subsequent logging
    - Adds X-Correlation-Id response header
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        correlation_id = request.headers.get("X-Correlation-Id", str(uuid4()))
        request.state.correlation_id = correlation_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            correlation_id=correlation_id,
            path=request.url.path,
        )

        response = await call_next(request)
        response.headers["X-Correlation-Id"] = correlation_id
        return response
