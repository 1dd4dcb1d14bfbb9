"""Access logging middleware using structlog."""

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "x-request-id"


class AccessLoggingMiddleware(BaseHTTPMiddleware):
    """
    Log one structured line per HTTP request.

    A request id (taken from ``X-Request-ID`` or generated) is bound to the
    structlog context for the duration of the request, so service log lines
    emitted while handling it carry the same id. The id is echoed back in
    the response header.

    Log fields:
        - method, path, status_code
        - duration_ms: Request duration in milliseconds
        - client_ip: Client IP address (first X-Forwarded-For hop if present)
        - request_id
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        """Process request and log access information."""
        start_time = time.perf_counter()
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex

        client_ip = request.client.host if request.client else "unknown"
        if xff_header := request.headers.get("x-forwarded-for"):
            client_ip = xff_header.split(",")[0].strip()

        with structlog.contextvars.bound_contextvars(request_id=request_id):
            response = await call_next(request)

            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.info(
                "http_request",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration_ms, 2),
                client_ip=client_ip,
            )

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
