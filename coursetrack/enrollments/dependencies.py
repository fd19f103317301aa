"""FastAPI dependencies for enrollments.

Provides dependency injection for:
- Enrollment service
- Error handlers
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from .exceptions import EnrollmentError, StorageError
from .service import EnrollmentService


async def get_enrollment_service(request: Request) -> EnrollmentService:
    """Get enrollment service from app state."""
    app_state = request.app.state
    if not getattr(app_state, "enrollment_service", None):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Enrollment service not available",
        )
    return app_state.enrollment_service


# Type alias for dependency injection
EnrollmentServiceDep = Annotated[EnrollmentService, Depends(get_enrollment_service)]


def handle_enrollment_error(error: EnrollmentError) -> HTTPException:
    """Convert enrollment errors to HTTP exceptions."""
    status_map = {
        "invalid_report": status.HTTP_422_UNPROCESSABLE_ENTITY,
        "invalid_cursor": status.HTTP_422_UNPROCESSABLE_ENTITY,
        "not_enrolled": status.HTTP_404_NOT_FOUND,
        "course_not_found": status.HTTP_404_NOT_FOUND,
        "already_enrolled": status.HTTP_409_CONFLICT,
        "enrollment_not_active": status.HTTP_409_CONFLICT,
        "payment_required": status.HTTP_402_PAYMENT_REQUIRED,
        "lock_timeout": status.HTTP_503_SERVICE_UNAVAILABLE,
    }

    if isinstance(error, StorageError):
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        status_code = status_map.get(error.code, status.HTTP_500_INTERNAL_SERVER_ERROR)

    headers = None
    if status_code == status.HTTP_503_SERVICE_UNAVAILABLE:
        headers = {"Retry-After": "1"}

    return HTTPException(
        status_code=status_code,
        detail=error.message,
        headers=headers,
    )
