"""Request context management using contextvars.

Each request gets a unique ID plus the authenticated user, the course being
acted on, and an optional distributed trace ID. Every log entry emitted while
handling the request carries these values without passing them explicitly.
"""

from contextvars import ContextVar
from typing import Any
from uuid import UUID, uuid4


request_id_var: ContextVar[str] = ContextVar("request_id", default="")
user_id_var: ContextVar[str | None] = ContextVar("user_id", default=None)
course_id_var: ContextVar[str | None] = ContextVar("course_id", default=None)
trace_id_var: ContextVar[str | None] = ContextVar("trace_id", default=None)

_OPTIONAL_VARS: dict[str, ContextVar[str | None]] = {
    "user_id": user_id_var,
    "course_id": course_id_var,
    "trace_id": trace_id_var,
}


def generate_request_id() -> str:
    """Generate a new unique request ID."""
    return str(uuid4())


def get_request_id() -> str:
    """Get the current request ID."""
    return request_id_var.get()


def set_request_id(request_id: str | None = None) -> str:
    """Set the request ID for the current context.

    Args:
        request_id: Optional request ID. If not provided, generates a new one.

    Returns:
        The request ID that was set.
    """
    rid = request_id or generate_request_id()
    request_id_var.set(rid)
    return rid


def set_user_id(user_id: str | UUID | None) -> None:
    """Set the authenticated user ID for the current context."""
    user_id_var.set(str(user_id) if user_id is not None else None)


def set_course_id(course_id: str | UUID | None) -> None:
    """Set the course ID the current request operates on."""
    course_id_var.set(str(course_id) if course_id is not None else None)


def set_trace_id(trace_id: str | None) -> None:
    """Set the trace ID from distributed tracing headers."""
    trace_id_var.set(trace_id)


def get_context() -> dict[str, Any]:
    """Get all non-empty context variables as a dictionary."""
    context: dict[str, Any] = {}

    request_id = get_request_id()
    if request_id:
        context["request_id"] = request_id

    for name, var in _OPTIONAL_VARS.items():
        value = var.get()
        if value:
            context[name] = value

    return context


def clear_context() -> None:
    """Clear all context variables.

    Called at the end of each request to prevent leakage between requests.
    """
    request_id_var.set("")
    for var in _OPTIONAL_VARS.values():
        var.set(None)
