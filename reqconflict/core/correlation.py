"""Correlation ID middleware for request tracing.

Each request gets a correlation_id that is:

1. Taken from the X-Correlation-ID header when the client sends one
2. Generated as a new UUID otherwise
3. Bound to all logs in the request via structlog.contextvars
4. Echoed back in the response headers

Background analysis runs started from a request copy the id into their own
log context, so a task's log lines can be traced back to the request that
started it.
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

CORRELATION_HEADER = "X-Correlation-ID"


class CorrelationMiddleware(BaseHTTPMiddleware):
    """Assign a correlation id to every request and bind it to the log context."""

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())

        structlog.contextvars.bind_contextvars(correlation_id=correlation_id)

        try:
            response = await call_next(request)
            response.headers[CORRELATION_HEADER] = correlation_id
            return response
        finally:
            # Prevent leakage into the next request handled by this worker
            structlog.contextvars.unbind_contextvars("correlation_id")


def get_correlation_id() -> str | None:
    """Get the current correlation_id from context.

    Returns:
        The current correlation_id, or None outside a request context.
    """
    return structlog.contextvars.get_contextvars().get("correlation_id")
