"""Enrollment and progress API endpoints.

Provides routes for:
- Free self-enrollment and unenrollment
- Progress reports from the player
- Enrollment and lesson-resume queries
- Checkout grants (integration, API key)
- Enrollment listing and lookup by id (admin)
"""

from uuid import UUID

from fastapi import APIRouter, Query, status

from coursetrack.auth.dependencies import AdminUser, CurrentUser, MasterApiKey
from coursetrack.core.context import set_course_id

from .dependencies import EnrollmentServiceDep, handle_enrollment_error
from .exceptions import EnrollmentError
from .schemas import (
    EnrollmentListResponse,
    EnrollmentPageResponse,
    EnrollmentResponse,
    EnrollRequest,
    GrantAccessRequest,
    LessonResumeResponse,
    ProgressReportRequest,
)


router = APIRouter(prefix="/v1/enrollments", tags=["enrollments"])
integrations_router = APIRouter(
    prefix="/v1/integrations/enrollments", tags=["integrations"]
)
admin_router = APIRouter(prefix="/v1/admin/enrollments", tags=["admin"])


# ==============================================================================
# Enrollment Endpoints
# ==============================================================================


@router.post(
    "",
    response_model=EnrollmentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Enroll in a free course",
)
async def enroll(
    data: EnrollRequest,
    enrollment_service: EnrollmentServiceDep,
    user: CurrentUser,
) -> EnrollmentResponse:
    """Enroll the current user in a free course.

    Paid courses answer 402; access to them is granted by checkout.
    """
    set_course_id(data.course_id)
    try:
        enrollment = await enrollment_service.enroll(user.id, data.course_id)
        return EnrollmentResponse.from_entity(enrollment)
    except EnrollmentError as e:
        raise handle_enrollment_error(e) from e


@router.get(
    "/my",
    response_model=EnrollmentListResponse,
    summary="List my enrollments",
)
async def list_my_enrollments(
    enrollment_service: EnrollmentServiceDep,
    user: CurrentUser,
) -> EnrollmentListResponse:
    """All enrollments of the current user, newest first, unenrolled included."""
    try:
        enrollments = await enrollment_service.list_my_enrollments(user.id)
    except EnrollmentError as e:
        raise handle_enrollment_error(e) from e

    return EnrollmentListResponse(
        items=[EnrollmentResponse.from_entity(e) for e in enrollments],
        total=len(enrollments),
    )


@router.get(
    "/{course_id}",
    response_model=EnrollmentResponse,
    summary="Get my enrollment in a course",
)
async def get_enrollment(
    course_id: UUID,
    enrollment_service: EnrollmentServiceDep,
    user: CurrentUser,
) -> EnrollmentResponse:
    """Get the current user's enrollment with per-lesson progress."""
    set_course_id(course_id)
    try:
        enrollment = await enrollment_service.get_enrollment(user.id, course_id)
        return EnrollmentResponse.from_entity(enrollment)
    except EnrollmentError as e:
        raise handle_enrollment_error(e) from e


@router.delete(
    "/{course_id}",
    response_model=EnrollmentResponse,
    summary="Unenroll from a course",
)
async def unenroll(
    course_id: UUID,
    enrollment_service: EnrollmentServiceDep,
    user: CurrentUser,
) -> EnrollmentResponse:
    """Unenroll the current user. Progress history is kept."""
    set_course_id(course_id)
    try:
        enrollment = await enrollment_service.unenroll(user.id, course_id)
        return EnrollmentResponse.from_entity(enrollment)
    except EnrollmentError as e:
        raise handle_enrollment_error(e) from e


# ==============================================================================
# Progress Endpoints
# ==============================================================================


@router.put(
    "/{course_id}/progress",
    response_model=EnrollmentResponse,
    summary="Report lesson progress",
)
async def report_progress(
    course_id: UUID,
    data: ProgressReportRequest,
    enrollment_service: EnrollmentServiceDep,
    user: CurrentUser,
) -> EnrollmentResponse:
    """Report playback progress for a lesson.

    Returns the authoritative enrollment; the player replaces its local
    prediction with it.
    """
    set_course_id(course_id)
    try:
        enrollment = await enrollment_service.report_progress(
            user.id, course_id, data.to_report()
        )
        return EnrollmentResponse.from_entity(enrollment)
    except EnrollmentError as e:
        raise handle_enrollment_error(e) from e


@router.get(
    "/{course_id}/lessons/{lesson_id}",
    response_model=LessonResumeResponse,
    summary="Get lesson resume position",
)
async def get_lesson_resume(
    course_id: UUID,
    lesson_id: str,
    enrollment_service: EnrollmentServiceDep,
    user: CurrentUser,
) -> LessonResumeResponse:
    """Where the player should seek when opening a lesson."""
    set_course_id(course_id)
    try:
        resume = await enrollment_service.get_lesson_resume(
            user.id, course_id, lesson_id
        )
        return LessonResumeResponse.from_entity(resume)
    except EnrollmentError as e:
        raise handle_enrollment_error(e) from e


# ==============================================================================
# Integration Endpoints
# ==============================================================================


@integrations_router.post(
    "/grant",
    response_model=EnrollmentResponse,
    summary="Grant course access after checkout",
)
async def grant_access(
    data: GrantAccessRequest,
    enrollment_service: EnrollmentServiceDep,
    _api_key: MasterApiKey,
) -> EnrollmentResponse:
    """Create the enrollment for a completed checkout.

    Idempotent: an existing active enrollment is returned unchanged.
    """
    set_course_id(data.course_id)
    try:
        enrollment = await enrollment_service.grant_access(
            data.user_id, data.course_id, data.payment_status
        )
        return EnrollmentResponse.from_entity(enrollment)
    except EnrollmentError as e:
        raise handle_enrollment_error(e) from e


# ==============================================================================
# Admin Endpoints
# ==============================================================================


@admin_router.get(
    "",
    response_model=EnrollmentPageResponse,
    summary="List all enrollments",
)
async def list_enrollments(
    enrollment_service: EnrollmentServiceDep,
    _admin: AdminUser,
    limit: int = Query(default=50, ge=1, le=200, description="Page size"),
    cursor: str | None = Query(default=None, description="Pagination cursor"),
) -> EnrollmentPageResponse:
    """List enrollments across all users, page by page (support)."""
    try:
        page = await enrollment_service.list_enrollments(limit=limit, cursor=cursor)
        return EnrollmentPageResponse.from_entity(page)
    except EnrollmentError as e:
        raise handle_enrollment_error(e) from e


@admin_router.get(
    "/{enrollment_id}",
    response_model=EnrollmentResponse,
    summary="Get enrollment by id",
)
async def get_enrollment_by_id(
    enrollment_id: UUID,
    enrollment_service: EnrollmentServiceDep,
    _admin: AdminUser,
) -> EnrollmentResponse:
    """Look up any enrollment by id (support)."""
    try:
        enrollment = await enrollment_service.get_enrollment_by_id(enrollment_id)
        return EnrollmentResponse.from_entity(enrollment)
    except EnrollmentError as e:
        raise handle_enrollment_error(e) from e
