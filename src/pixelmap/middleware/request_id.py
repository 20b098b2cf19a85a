"""Request ID + access log middleware.

Learn: Every request gets an ID, taken from the incoming X-Request-ID
header or generated. The ID is bound to structlog's contextvars so every
log line emitted while handling the request carries it, and one
`http.request` line is logged per request with its status and duration.
"""

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger()


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Propagate a request ID and log one line per request."""

    def __init__(self, app, access_log: bool = True):
        super().__init__(app)
        self.access_log = access_log

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        started = time.perf_counter()
        response: Response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        if self.access_log:
            logger.info(
                "http.request",
                method=request.method,
                path=request.url.path,
                status=response.status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 1),
            )
        return response
