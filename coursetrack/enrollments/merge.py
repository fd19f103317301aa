"""Progress merge engine.

Pure functions turning (enrollment, progress report) into the next enrollment
state. Nothing here touches storage or the clock unless ``now`` is omitted.

Per lesson the merge keeps the furthest watched position (max) and the
completion flag once set (OR), so applying reports in any order, any number
of times, converges on the same lesson state.
"""

from collections.abc import Mapping
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal

from coursetrack.catalog.models import CourseOutline

from .exceptions import EnrollmentNotActiveError, InvalidReportError
from .models import Enrollment, LessonProgress


DEFAULT_COMPLETION_THRESHOLD = 0.90


@dataclass(frozen=True, slots=True)
class ProgressReport:
    """Playback position observed by the client for one lesson."""

    lesson_id: str
    position_ms: int
    duration_ms: int
    completed_hint: bool = False


def validate_report(report: ProgressReport) -> None:
    """Reject reports that can never be merged.

    Raises:
        InvalidReportError: On a non-positive duration or negative position
    """
    if not report.lesson_id:
        raise InvalidReportError("Lesson id is required")
    if report.duration_ms <= 0:
        raise InvalidReportError("Duration must be positive")
    if report.position_ms < 0:
        raise InvalidReportError("Position must not be negative")


def normalize_report(report: ProgressReport, outline: CourseOutline) -> ProgressReport:
    """Check a report against the course outline.

    The catalog's duration replaces the reported one when the catalog knows
    it, and the position is clamped to the duration.

    Raises:
        InvalidReportError: If the lesson is not part of the course
    """
    lesson = outline.get_lesson(report.lesson_id)
    if lesson is None:
        raise InvalidReportError("Lesson does not belong to this course")

    duration_ms = report.duration_ms
    if lesson.duration_ms and lesson.duration_ms > 0:
        duration_ms = lesson.duration_ms

    return replace(
        report,
        duration_ms=duration_ms,
        position_ms=min(report.position_ms, duration_ms),
    )


def is_report_complete(
    report: ProgressReport,
    completion_threshold: float = DEFAULT_COMPLETION_THRESHOLD,
    trust_completed_hint: bool = True,
) -> bool:
    """Whether this single report marks its lesson completed."""
    if trust_completed_hint and report.completed_hint:
        return True
    # Decimal keeps 5400/6000 exactly at 0.90
    threshold = Decimal(str(completion_threshold))
    return Decimal(report.position_ms) >= threshold * Decimal(report.duration_ms)


def merge_lesson(
    prior: LessonProgress | None,
    report: ProgressReport,
    is_complete: bool,
) -> LessonProgress:
    """Merge one report into the lesson's prior state."""
    if prior is None:
        prior = LessonProgress(lesson_id=report.lesson_id)
    return LessonProgress(
        lesson_id=report.lesson_id,
        watched_duration_ms=max(prior.watched_duration_ms, report.position_ms),
        completed=prior.completed or is_complete,
    )


def compute_progress_percent(
    lessons_progress: Mapping[str, LessonProgress], total_lessons: int
) -> int:
    """Completed lessons over course lessons, rounded half-up to 0..100."""
    if total_lessons <= 0:
        return 0
    completed = sum(1 for lp in lessons_progress.values() if lp.completed)
    percent = (Decimal(100 * completed) / Decimal(total_lessons)).quantize(
        Decimal(1), rounding=ROUND_HALF_UP
    )
    return min(100, int(percent))


def merge_progress(
    enrollment: Enrollment,
    report: ProgressReport,
    total_lessons: int,
    *,
    now: datetime | None = None,
    completion_threshold: float = DEFAULT_COMPLETION_THRESHOLD,
    trust_completed_hint: bool = True,
) -> Enrollment:
    """Apply a progress report to an enrollment.

    Args:
        enrollment: Current enrollment state (not mutated)
        report: Incoming progress report
        total_lessons: Number of lessons in the course
        now: Time of the report, defaults to the current UTC time
        completion_threshold: Watched fraction that completes a lesson
        trust_completed_hint: Whether ``report.completed_hint`` completes a lesson

    Returns:
        The new enrollment state, to be persisted by the caller

    Raises:
        InvalidReportError: If the report is malformed
        EnrollmentNotActiveError: If the enrollment was unenrolled
    """
    validate_report(report)
    if not enrollment.is_active:
        raise EnrollmentNotActiveError

    merged = merge_lesson(
        enrollment.lessons_progress.get(report.lesson_id),
        report,
        is_report_complete(report, completion_threshold, trust_completed_hint),
    )
    lessons_progress = {**enrollment.lessons_progress, report.lesson_id: merged}
    progress_percent = compute_progress_percent(lessons_progress, total_lessons)

    now = now or datetime.now(UTC)
    completed_at = enrollment.completed_at
    if completed_at is None and progress_percent >= 100:
        completed_at = now

    return replace(
        enrollment,
        lessons_progress=lessons_progress,
        progress_percent=progress_percent,
        last_accessed_at=now,
        last_lesson_id=report.lesson_id,
        completed_at=completed_at,
    )


def resume_position(enrollment: Enrollment, lesson_id: str) -> int:
    """Position (ms) a lesson should reopen at: the furthest point watched."""
    lesson = enrollment.lessons_progress.get(lesson_id)
    return lesson.watched_duration_ms if lesson else 0
