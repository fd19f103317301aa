"""Tests for the progress merge engine."""

from dataclasses import replace
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from coursetrack.catalog.models import CourseOutline, LessonOutline
from coursetrack.enrollments.exceptions import (
    EnrollmentNotActiveError,
    InvalidReportError,
)
from coursetrack.enrollments.merge import (
    ProgressReport,
    compute_progress_percent,
    is_report_complete,
    merge_lesson,
    merge_progress,
    normalize_report,
    resume_position,
)
from coursetrack.enrollments.models import (
    Enrollment,
    EnrollmentStatus,
    LessonProgress,
)


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
TOTAL_LESSONS = 4


@pytest.fixture
def enrollment() -> Enrollment:
    """Fresh active enrollment."""
    return Enrollment(user_id=uuid4(), course_id=uuid4(), version=1)


def report(lesson_id: str, position_ms: int, duration_ms: int = 6000, hint: bool = False):
    return ProgressReport(
        lesson_id=lesson_id,
        position_ms=position_ms,
        duration_ms=duration_ms,
        completed_hint=hint,
    )


def apply(enrollment: Enrollment, *reports: ProgressReport) -> Enrollment:
    for r in reports:
        enrollment = merge_progress(enrollment, r, TOTAL_LESSONS, now=NOW)
    return enrollment


class TestScenarios:
    """Reference scenarios on a 4-lesson course."""

    def test_crossing_threshold_completes_lesson(self, enrollment: Enrollment) -> None:
        """L1 at 5400/6000 is exactly 90%: completed, course at 25%."""
        result = apply(enrollment, report("L1", 5400))

        assert result.lessons_progress["L1"] == LessonProgress(
            lesson_id="L1", watched_duration_ms=5400, completed=True
        )
        assert result.progress_percent == 25

    def test_rewind_keeps_furthest_position_and_completion(
        self, enrollment: Enrollment
    ) -> None:
        """A later report at 100ms does not undo progress."""
        result = apply(enrollment, report("L1", 5400), report("L1", 100))

        assert result.lessons_progress["L1"].watched_duration_ms == 5400
        assert result.lessons_progress["L1"].completed is True
        assert result.progress_percent == 25

    def test_unenrolled_enrollment_rejects_report(self, enrollment: Enrollment) -> None:
        """Reports on an unenrolled enrollment are refused."""
        unenrolled = replace(enrollment, status=EnrollmentStatus.UNENROLLED)

        with pytest.raises(EnrollmentNotActiveError):
            merge_progress(unenrolled, report("L1", 5400), TOTAL_LESSONS, now=NOW)

    def test_reports_for_two_lessons_in_either_order(
        self, enrollment: Enrollment
    ) -> None:
        """On a 2-lesson course, L1 3000/6000 and L2 6000/6000 give 50%."""
        a = report("L1", 3000)
        b = report("L2", 6000)

        ab = merge_progress(merge_progress(enrollment, a, 2, now=NOW), b, 2, now=NOW)
        ba = merge_progress(merge_progress(enrollment, b, 2, now=NOW), a, 2, now=NOW)

        assert ab.lessons_progress == ba.lessons_progress
        assert ab.lessons_progress["L1"].completed is False
        assert ab.lessons_progress["L2"].completed is True
        assert ab.progress_percent == ba.progress_percent == 50


class TestMergeProperties:
    """Algebraic properties of the lesson merge."""

    def test_idempotent(self, enrollment: Enrollment) -> None:
        """Applying the same report twice equals applying it once."""
        r = report("L2", 4200)
        assert apply(enrollment, r, r) == apply(enrollment, r)

    def test_watched_duration_is_max_of_positions(self, enrollment: Enrollment) -> None:
        """Watched duration ends at the largest reported position."""
        positions = [1200, 4800, 300, 4700, 2500]
        result = apply(enrollment, *(report("L3", p) for p in positions))
        assert result.lessons_progress["L3"].watched_duration_ms == max(positions)

    def test_completion_is_sticky(self) -> None:
        """A completed lesson stays completed after an earlier position."""
        prior = LessonProgress(lesson_id="L1", watched_duration_ms=100, completed=True)
        merged = merge_lesson(prior, report("L1", 0), is_complete=False)
        assert merged.completed is True
        assert merged.watched_duration_ms == 100

    def test_order_independent(self) -> None:
        """merge(merge(a), b) == merge(merge(b), a) for one lesson."""
        a = report("L1", 5500)
        b = report("L1", 2000, hint=True)

        ab = merge_lesson(merge_lesson(None, a, True), b, True)
        ba = merge_lesson(merge_lesson(None, b, True), a, True)

        assert ab == ba

    def test_input_not_mutated(self, enrollment: Enrollment) -> None:
        """The merge returns a new value."""
        apply(enrollment, report("L1", 5400))
        assert enrollment.lessons_progress == {}
        assert enrollment.progress_percent == 0

    def test_one_record_per_lesson(self, enrollment: Enrollment) -> None:
        """Repeated reports for a lesson update a single entry."""
        result = apply(enrollment, report("L1", 10), report("L1", 20), report("L2", 5))
        assert sorted(result.lessons_progress) == ["L1", "L2"]

    def test_version_untouched(self, enrollment: Enrollment) -> None:
        """Versioning belongs to the store."""
        assert apply(enrollment, report("L1", 10)).version == enrollment.version


class TestCompletionRule:
    """Tests for is_report_complete."""

    def test_just_below_threshold(self) -> None:
        assert is_report_complete(report("L1", 5399)) is False

    def test_at_threshold(self) -> None:
        assert is_report_complete(report("L1", 5400)) is True

    def test_hint_completes(self) -> None:
        assert is_report_complete(report("L1", 0, hint=True)) is True

    def test_hint_ignored_when_untrusted(self) -> None:
        assert (
            is_report_complete(report("L1", 0, hint=True), trust_completed_hint=False)
            is False
        )

    def test_custom_threshold(self) -> None:
        assert is_report_complete(report("L1", 4800), completion_threshold=0.8) is True
        assert is_report_complete(report("L1", 4799), completion_threshold=0.8) is False


class TestValidation:
    """Malformed reports are rejected before any state change."""

    @pytest.mark.parametrize(
        "position_ms,duration_ms",
        [(100, 0), (100, -5), (-1, 6000)],
    )
    def test_invalid_numbers(
        self, enrollment: Enrollment, position_ms: int, duration_ms: int
    ) -> None:
        with pytest.raises(InvalidReportError):
            merge_progress(
                enrollment,
                report("L1", position_ms, duration_ms),
                TOTAL_LESSONS,
                now=NOW,
            )

    def test_invalid_report_checked_before_status(self, enrollment: Enrollment) -> None:
        """A malformed report on an unenrolled enrollment is InvalidReport."""
        unenrolled = replace(enrollment, status=EnrollmentStatus.UNENROLLED)
        with pytest.raises(InvalidReportError):
            merge_progress(unenrolled, report("L1", 10, 0), TOTAL_LESSONS, now=NOW)


class TestNormalizeReport:
    """Tests for normalize_report against the course outline."""

    @pytest.fixture
    def outline(self) -> CourseOutline:
        return CourseOutline(
            course_id=uuid4(),
            lessons=(
                LessonOutline(lesson_id="L1", duration_ms=6000),
                LessonOutline(lesson_id="PDF", duration_ms=None),
            ),
        )

    def test_unknown_lesson_rejected(self, outline: CourseOutline) -> None:
        with pytest.raises(InvalidReportError):
            normalize_report(report("L9", 100), outline)

    def test_catalog_duration_wins(self, outline: CourseOutline) -> None:
        normalized = normalize_report(report("L1", 5400, duration_ms=60000), outline)
        assert normalized.duration_ms == 6000
        assert is_report_complete(normalized) is True

    def test_position_clamped_to_duration(self, outline: CourseOutline) -> None:
        normalized = normalize_report(report("L1", 9000), outline)
        assert normalized.position_ms == 6000

    def test_reported_duration_used_without_catalog_duration(
        self, outline: CourseOutline
    ) -> None:
        normalized = normalize_report(report("PDF", 30, duration_ms=100), outline)
        assert normalized.duration_ms == 100
        assert normalized.position_ms == 30


class TestProgressPercent:
    """Tests for compute_progress_percent."""

    @staticmethod
    def lessons(completed: int, total: int) -> dict[str, LessonProgress]:
        return {
            f"L{i}": LessonProgress(lesson_id=f"L{i}", completed=i <= completed)
            for i in range(1, total + 1)
        }

    def test_no_lessons(self) -> None:
        assert compute_progress_percent({}, 0) == 0

    def test_rounds_half_up(self) -> None:
        """1 of 8 is 12.5%, rounded to 13."""
        assert compute_progress_percent(self.lessons(1, 8), 8) == 13

    def test_rounds_down_below_half(self) -> None:
        """1 of 3 is 33.3%."""
        assert compute_progress_percent(self.lessons(1, 3), 3) == 33

    def test_all_completed(self) -> None:
        assert compute_progress_percent(self.lessons(4, 4), 4) == 100

    def test_capped_when_course_shrinks(self) -> None:
        """Completed lessons removed from the course never push past 100."""
        assert compute_progress_percent(self.lessons(5, 5), 4) == 100


class TestCourseCompletion:
    """Tests for last access and completed_at tracking."""

    def test_last_access_recorded(self, enrollment: Enrollment) -> None:
        result = apply(enrollment, report("L2", 10))
        assert result.last_accessed_at == NOW
        assert result.last_lesson_id == "L2"

    def test_completed_at_set_once(self, enrollment: Enrollment) -> None:
        done = apply(enrollment, *(report(f"L{i}", 6000) for i in range(1, 5)))
        assert done.progress_percent == 100
        assert done.completed_at == NOW

        later = merge_progress(
            done, report("L1", 10), TOTAL_LESSONS, now=NOW + timedelta(days=1)
        )
        assert later.completed_at == NOW
        assert later.last_accessed_at == NOW + timedelta(days=1)

    def test_completed_at_unset_below_100(self, enrollment: Enrollment) -> None:
        assert apply(enrollment, report("L1", 6000)).completed_at is None


class TestResumePosition:
    """Tests for resume_position."""

    def test_unwatched_lesson_starts_at_zero(self, enrollment: Enrollment) -> None:
        assert resume_position(enrollment, "L1") == 0

    def test_resumes_at_furthest_point(self, enrollment: Enrollment) -> None:
        result = apply(enrollment, report("L1", 4000), report("L1", 1000))
        assert resume_position(result, "L1") == 4000
