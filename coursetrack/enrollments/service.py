"""Enrollment service layer.

Business logic for:
- Enrolling (free self-enrollment and payment grants) and unenrolling
- Progress reports, merged into the stored enrollment
- Enrollment and lesson-resume queries

Every write runs load -> merge -> persist under the per-enrollment lock. A
failed or rejected write (StorageError, including a lost compare-and-swap)
re-runs the whole cycle, which is safe because merging is idempotent.
"""

import asyncio
import base64
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import TypeVar
from uuid import UUID

import structlog

from coursetrack.catalog.models import CourseOutline
from coursetrack.catalog.service import CourseCatalog

from .exceptions import (
    AlreadyEnrolledError,
    CourseNotFoundError,
    EnrollmentNotActiveError,
    InvalidCursorError,
    InvalidReportError,
    NotEnrolledError,
    PaymentRequiredError,
    StorageError,
)
from .locks import KeyedLock, enrollment_lock_key
from .merge import (
    DEFAULT_COMPLETION_THRESHOLD,
    ProgressReport,
    merge_progress,
    normalize_report,
    resume_position,
    validate_report,
)
from .models import Enrollment, EnrollmentStatus, PaymentStatus
from .store import EnrollmentStore


logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class LessonResume:
    """Where a lesson reopens and whether it is already completed."""

    lesson_id: str
    position_ms: int
    completed: bool


@dataclass(frozen=True, slots=True)
class EnrollmentPage:
    """One page of the admin enrollment listing."""

    items: list[Enrollment]
    next_cursor: str | None = None

    @property
    def has_more(self) -> bool:
        return self.next_cursor is not None


# ==============================================================================
# Cursor Encoding/Decoding
# ==============================================================================


def encode_cursor(user_id: UUID, course_id: UUID) -> str:
    """Encode pagination cursor."""
    cursor_str = f"{user_id}|{course_id}"
    return base64.urlsafe_b64encode(cursor_str.encode()).decode()


def decode_cursor(cursor: str) -> tuple[UUID, UUID]:
    """Decode pagination cursor."""
    try:
        cursor_str = base64.urlsafe_b64decode(cursor.encode()).decode()
        user_part, course_part = cursor_str.split("|")
        return UUID(user_part), UUID(course_part)
    except ValueError as e:
        msg = f"Invalid cursor format: {e}"
        raise ValueError(msg) from e


class EnrollmentService:
    """Service for enrollments and progress reconciliation."""

    def __init__(
        self,
        store: EnrollmentStore,
        catalog: CourseCatalog,
        lock: KeyedLock,
        *,
        lock_timeout_seconds: float = 5.0,
        completion_threshold: float = DEFAULT_COMPLETION_THRESHOLD,
        trust_completed_hint: bool = True,
        retry_attempts: int = 3,
        retry_backoff_seconds: float = 0.05,
    ):
        self.store = store
        self.catalog = catalog
        self.lock = lock
        self.lock_timeout_seconds = lock_timeout_seconds
        self.completion_threshold = completion_threshold
        self.trust_completed_hint = trust_completed_hint
        self.retry_attempts = retry_attempts
        self.retry_backoff_seconds = retry_backoff_seconds

    # ==========================================================================
    # Helpers
    # ==========================================================================

    async def _get_outline(self, course_id: UUID) -> CourseOutline:
        outline = await self.catalog.get_outline(course_id)
        if outline is None:
            raise CourseNotFoundError
        return outline

    async def _locked(
        self,
        user_id: UUID,
        course_id: UUID,
        operation: Callable[[], Awaitable[T]],
    ) -> T:
        """Run ``operation`` under the enrollment lock, retrying storage failures."""
        key = enrollment_lock_key(user_id, course_id)
        async with self.lock.lock(key, self.lock_timeout_seconds):
            attempt = 1
            delay = self.retry_backoff_seconds
            while True:
                try:
                    return await operation()
                except StorageError as e:
                    if attempt >= self.retry_attempts:
                        raise
                    logger.warning(
                        "storage_retry",
                        user_id=str(user_id),
                        course_id=str(course_id),
                        attempt=attempt,
                        code=e.code,
                    )
                    await asyncio.sleep(delay)
                    attempt += 1
                    delay *= 2

    # ==========================================================================
    # Enrollment Operations
    # ==========================================================================

    async def enroll(
        self,
        user_id: UUID,
        course_id: UUID,
        payment_status: PaymentStatus = PaymentStatus.FREE,
    ) -> Enrollment:
        """Enroll user in a course.

        Args:
            user_id: User UUID
            course_id: Course UUID
            payment_status: How access was granted

        Returns:
            New Enrollment with empty progress

        Raises:
            CourseNotFoundError: If the catalog does not know the course
            PaymentRequiredError: If a paid course is enrolled for free
            AlreadyEnrolledError: If an active enrollment exists
        """
        outline = await self._get_outline(course_id)
        if payment_status == PaymentStatus.FREE and not outline.is_free:
            raise PaymentRequiredError

        async def attempt() -> Enrollment:
            existing = await self.store.get(user_id, course_id)
            if existing is not None and existing.is_active:
                raise AlreadyEnrolledError
            return await self._create(user_id, course_id, payment_status, existing)

        return await self._locked(user_id, course_id, attempt)

    async def grant_access(
        self,
        user_id: UUID,
        course_id: UUID,
        payment_status: PaymentStatus = PaymentStatus.PAID,
    ) -> Enrollment:
        """Enroll on behalf of checkout; an active enrollment is returned as is."""
        await self._get_outline(course_id)

        async def attempt() -> Enrollment:
            existing = await self.store.get(user_id, course_id)
            if existing is not None and existing.is_active:
                logger.info(
                    "enrollment_access_already_granted",
                    user_id=str(user_id),
                    course_id=str(course_id),
                    enrollment_id=str(existing.enrollment_id),
                )
                return existing
            return await self._create(user_id, course_id, payment_status, existing)

        return await self._locked(user_id, course_id, attempt)

    async def _create(
        self,
        user_id: UUID,
        course_id: UUID,
        payment_status: PaymentStatus,
        previous: Enrollment | None,
    ) -> Enrollment:
        # Re-enrolling replaces the unenrolled row, so the write is conditioned
        # on its version
        enrollment = Enrollment(
            user_id=user_id,
            course_id=course_id,
            payment_status=payment_status,
            version=previous.version if previous else 0,
        )
        stored = await self.store.put(enrollment)

        logger.info(
            "enrollment_created",
            user_id=str(user_id),
            course_id=str(course_id),
            enrollment_id=str(stored.enrollment_id),
            payment_status=payment_status.value,
            replaces=str(previous.enrollment_id) if previous else None,
        )
        return stored

    async def unenroll(self, user_id: UUID, course_id: UUID) -> Enrollment:
        """Unenroll user from a course, keeping its progress history.

        Raises:
            NotEnrolledError: If there is no active enrollment
        """

        async def attempt() -> Enrollment:
            existing = await self.store.get(user_id, course_id)
            if existing is None or not existing.is_active:
                raise NotEnrolledError
            return await self.store.put(
                replace(
                    existing,
                    status=EnrollmentStatus.UNENROLLED,
                    unenrolled_at=datetime.now(UTC),
                )
            )

        stored = await self._locked(user_id, course_id, attempt)

        logger.info(
            "enrollment_unenrolled",
            user_id=str(user_id),
            course_id=str(course_id),
            enrollment_id=str(stored.enrollment_id),
            progress_percent=stored.progress_percent,
        )
        return stored

    # ==========================================================================
    # Progress Operations
    # ==========================================================================

    async def report_progress(
        self,
        user_id: UUID,
        course_id: UUID,
        report: ProgressReport,
    ) -> Enrollment:
        """Merge a progress report into the user's enrollment.

        Sent by the player at lesson open, periodically, at the completion
        threshold and at close. Repeated or stale reports are harmless.

        Returns:
            The stored enrollment after the merge

        Raises:
            InvalidReportError: If the report is malformed or names a lesson
                outside the course
            CourseNotFoundError: If the catalog does not know the course
            NotEnrolledError: If the user never enrolled
            EnrollmentNotActiveError: If the enrollment was unenrolled
        """
        try:
            validate_report(report)
            outline = await self._get_outline(course_id)
            report = normalize_report(report, outline)
        except InvalidReportError as e:
            logger.warning(
                "progress_report_rejected",
                user_id=str(user_id),
                course_id=str(course_id),
                lesson_id=report.lesson_id,
                reason=e.message,
            )
            raise

        async def attempt() -> tuple[Enrollment, Enrollment]:
            current = await self.store.get(user_id, course_id)
            if current is None:
                raise NotEnrolledError
            merged = merge_progress(
                current,
                report,
                outline.total_lessons,
                now=datetime.now(UTC),
                completion_threshold=self.completion_threshold,
                trust_completed_hint=self.trust_completed_hint,
            )
            return current, await self.store.put(merged)

        previous, stored = await self._locked(user_id, course_id, attempt)

        logger.debug(
            "progress_reported",
            user_id=str(user_id),
            course_id=str(course_id),
            lesson_id=report.lesson_id,
            position_ms=report.position_ms,
            progress_percent=stored.progress_percent,
        )

        prior_lesson = previous.lessons_progress.get(report.lesson_id)
        if stored.lessons_progress[report.lesson_id].completed and not (
            prior_lesson and prior_lesson.completed
        ):
            logger.info(
                "lesson_completed",
                user_id=str(user_id),
                course_id=str(course_id),
                lesson_id=report.lesson_id,
                progress_percent=stored.progress_percent,
            )

        if stored.completed_at is not None and previous.completed_at is None:
            logger.info(
                "course_completed",
                user_id=str(user_id),
                course_id=str(course_id),
                enrollment_id=str(stored.enrollment_id),
            )

        return stored

    # ==========================================================================
    # Queries
    # ==========================================================================

    async def list_my_enrollments(self, user_id: UUID) -> list[Enrollment]:
        """Get all enrollments of a user, newest first."""
        return await self.store.list_by_user(user_id)

    async def get_enrollment(self, user_id: UUID, course_id: UUID) -> Enrollment:
        """Get the user's enrollment in a course, active or not.

        Raises:
            NotEnrolledError: If the user never enrolled
        """
        enrollment = await self.store.get(user_id, course_id)
        if enrollment is None:
            raise NotEnrolledError
        return enrollment

    async def get_enrollment_by_id(self, enrollment_id: UUID) -> Enrollment:
        """Get an enrollment by id (support tooling)."""
        enrollment = await self.store.get_by_id(enrollment_id)
        if enrollment is None:
            raise NotEnrolledError("Enrollment not found")
        return enrollment

    async def list_enrollments(
        self, limit: int = 50, cursor: str | None = None
    ) -> EnrollmentPage:
        """List all enrollments page by page (support tooling).

        Raises:
            InvalidCursorError: If ``cursor`` was not issued by this listing
        """
        after = None
        if cursor:
            try:
                after = decode_cursor(cursor)
            except ValueError as e:
                raise InvalidCursorError from e

        # One extra row tells whether another page exists
        rows = await self.store.list_all(limit + 1, after)
        items = rows[:limit]

        next_cursor = None
        if len(rows) > limit and items:
            last = items[-1]
            next_cursor = encode_cursor(last.user_id, last.course_id)

        return EnrollmentPage(items=items, next_cursor=next_cursor)

    async def get_lesson_resume(
        self, user_id: UUID, course_id: UUID, lesson_id: str
    ) -> LessonResume:
        """Get the seek position for opening a lesson.

        Raises:
            NotEnrolledError: If the user never enrolled
            EnrollmentNotActiveError: If the enrollment was unenrolled
        """
        enrollment = await self.get_enrollment(user_id, course_id)
        if not enrollment.is_active:
            raise EnrollmentNotActiveError

        lesson = enrollment.lessons_progress.get(lesson_id)
        return LessonResume(
            lesson_id=lesson_id,
            position_ms=resume_position(enrollment, lesson_id),
            completed=lesson.completed if lesson else False,
        )
