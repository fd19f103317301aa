# Core infrastructure
from coursetrack.core.context import (
    clear_context,
    get_context,
    get_request_id,
    set_course_id,
    set_request_id,
    set_trace_id,
    set_user_id,
)
from coursetrack.core.logging import configure_structlog, get_logger
from coursetrack.core.middleware import RequestContextMiddleware


__all__ = [
    "RequestContextMiddleware",
    "clear_context",
    "configure_structlog",
    "get_context",
    "get_logger",
    "get_request_id",
    "set_course_id",
    "set_request_id",
    "set_trace_id",
    "set_user_id",
]
