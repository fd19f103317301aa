"""Request middleware for context management and access logging."""

import time
from collections.abc import Awaitable, Callable

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from coursetrack.core.context import clear_context, set_request_id, set_trace_id


logger = structlog.get_logger(__name__)

_CLIENT_ERROR_STATUS = 400


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Set up per-request logging context and log request start/finish.

    1. Reuses the caller's request ID header or generates one
    2. Extracts a trace ID from X-Trace-ID, B3 or W3C traceparent headers
    3. Logs request start and completion with timing
    4. Echoes the request ID in the response and clears the context
    """

    REQUEST_ID_HEADER = "X-Request-ID"
    TRACE_ID_HEADER = "X-Trace-ID"
    B3_TRACE_HEADER = "X-B3-TraceId"
    TRACEPARENT_HEADER = "traceparent"

    def __init__(
        self,
        app: ASGIApp,
        log_requests: bool = True,
        exclude_paths: list[str] | None = None,
    ) -> None:
        super().__init__(app)
        self.log_requests = log_requests
        self.exclude_paths = exclude_paths or ["/health"]

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        start_time = time.perf_counter()

        request_id = set_request_id(request.headers.get(self.REQUEST_ID_HEADER))
        request.state.request_id = request_id

        trace_id = (
            request.headers.get(self.TRACE_ID_HEADER)
            or request.headers.get(self.B3_TRACE_HEADER)
            or extract_traceparent(request.headers.get(self.TRACEPARENT_HEADER))
        )
        if trace_id:
            set_trace_id(trace_id)

        should_log = self.log_requests and not any(
            request.url.path.startswith(p) for p in self.exclude_paths
        )

        if should_log:
            logger.info(
                "request_started",
                method=request.method,
                path=request.url.path,
                client_ip=get_client_ip(request),
            )

        try:
            response = await call_next(request)
            duration_ms = (time.perf_counter() - start_time) * 1000

            if should_log:
                log_method = (
                    logger.warning
                    if response.status_code >= _CLIENT_ERROR_STATUS
                    else logger.info
                )
                log_method(
                    "request_completed",
                    method=request.method,
                    path=request.url.path,
                    status_code=response.status_code,
                    duration_ms=round(duration_ms, 2),
                )

            response.headers[self.REQUEST_ID_HEADER] = request_id
            return response

        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.exception(
                "request_failed",
                method=request.method,
                path=request.url.path,
                error_type=type(e).__name__,
                duration_ms=round(duration_ms, 2),
            )
            raise

        finally:
            clear_context()


def get_client_ip(request: Request) -> str | None:
    """Get the client IP address, honoring reverse-proxy headers."""
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip

    return request.client.host if request.client else None


def extract_traceparent(traceparent: str | None) -> str | None:
    """Extract the trace ID from a W3C traceparent header.

    Format: {version}-{trace-id}-{parent-id}-{trace-flags}
    """
    if not traceparent:
        return None

    parts = traceparent.split("-")
    if len(parts) >= 2:
        return parts[1]

    return None
