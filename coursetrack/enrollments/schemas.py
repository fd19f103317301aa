"""Pydantic schemas for enrollments and progress reports.

Request and response models for:
- Enrollment (free self-enrollment, payment grants)
- Progress reports
- Enrollment and lesson-resume queries
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .merge import ProgressReport
from .models import Enrollment, EnrollmentStatus, LessonProgress, PaymentStatus
from .service import EnrollmentPage, LessonResume


# ==============================================================================
# Request Schemas
# ==============================================================================


class EnrollRequest(BaseModel):
    """Request to enroll in a free course."""

    course_id: UUID = Field(..., description="Course UUID")


class GrantAccessRequest(BaseModel):
    """Checkout notification granting a user access to a course."""

    user_id: UUID = Field(..., description="User UUID")
    course_id: UUID = Field(..., description="Course UUID")
    payment_status: PaymentStatus = Field(
        PaymentStatus.PAID, description="How access was granted"
    )


class ProgressReportRequest(BaseModel):
    """Playback observation sent by the player.

    Sent at lesson open, periodically while playing, when crossing the
    completion threshold and at close.
    """

    lesson_id: str = Field(..., min_length=1, description="Lesson id")
    position_ms: int = Field(..., ge=0, description="Current playback position")
    duration_ms: int = Field(..., gt=0, description="Lesson duration")
    completed_hint: bool = Field(
        False, description="Player considers the lesson completed"
    )

    def to_report(self) -> ProgressReport:
        return ProgressReport(
            lesson_id=self.lesson_id,
            position_ms=self.position_ms,
            duration_ms=self.duration_ms,
            completed_hint=self.completed_hint,
        )


# ==============================================================================
# Response Schemas
# ==============================================================================


class LessonProgressResponse(BaseModel):
    """Per-lesson progress within an enrollment."""

    model_config = ConfigDict(from_attributes=True)

    lesson_id: str
    watched_duration_ms: int
    completed: bool

    @classmethod
    def from_entity(cls, entity: LessonProgress) -> "LessonProgressResponse":
        """Create response from entity."""
        return cls(
            lesson_id=entity.lesson_id,
            watched_duration_ms=entity.watched_duration_ms,
            completed=entity.completed,
        )


class EnrollmentResponse(BaseModel):
    """Authoritative enrollment state; clients overwrite their local copy."""

    enrollment_id: UUID
    user_id: UUID
    course_id: UUID
    payment_status: PaymentStatus
    status: EnrollmentStatus
    enrolled_at: datetime
    lessons_progress: list[LessonProgressResponse] = Field(default_factory=list)
    lessons_completed: int = 0
    progress_percent: int = Field(0, description="0-100 percentage")
    last_accessed_at: datetime | None = None
    last_lesson_id: str | None = None
    completed_at: datetime | None = None
    unenrolled_at: datetime | None = None
    version: int

    @classmethod
    def from_entity(cls, entity: Enrollment) -> "EnrollmentResponse":
        """Create response from entity."""
        return cls(
            enrollment_id=entity.enrollment_id,
            user_id=entity.user_id,
            course_id=entity.course_id,
            payment_status=entity.payment_status,
            status=entity.status,
            enrolled_at=entity.enrolled_at,
            lessons_progress=[
                LessonProgressResponse.from_entity(lp)
                for lp in entity.lessons_progress.values()
            ],
            lessons_completed=entity.lessons_completed,
            progress_percent=entity.progress_percent,
            last_accessed_at=entity.last_accessed_at,
            last_lesson_id=entity.last_lesson_id,
            completed_at=entity.completed_at,
            unenrolled_at=entity.unenrolled_at,
            version=entity.version,
        )


class EnrollmentListResponse(BaseModel):
    """List of the user's enrollments."""

    items: list[EnrollmentResponse]
    total: int


class EnrollmentPageResponse(BaseModel):
    """Paginated enrollment list (admin)."""

    items: list[EnrollmentResponse] = Field(description="List of enrollments")
    has_more: bool = Field(description="Whether more enrollments exist")
    next_cursor: str | None = Field(None, description="Cursor for next page")

    @classmethod
    def from_entity(cls, entity: EnrollmentPage) -> "EnrollmentPageResponse":
        """Create response from entity."""
        return cls(
            items=[EnrollmentResponse.from_entity(e) for e in entity.items],
            has_more=entity.has_more,
            next_cursor=entity.next_cursor,
        )


class LessonResumeResponse(BaseModel):
    """Where to open a lesson."""

    lesson_id: str
    position_ms: int = Field(description="Seek position")
    completed: bool

    @classmethod
    def from_entity(cls, entity: LessonResume) -> "LessonResumeResponse":
        """Create response from entity."""
        return cls(
            lesson_id=entity.lesson_id,
            position_ms=entity.position_ms,
            completed=entity.completed,
        )
