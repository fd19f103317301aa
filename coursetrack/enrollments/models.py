"""Database models for enrollments and per-lesson progress.

Cassandra table definition and entity classes for:
- Enrollments: one row per (user, course), partitioned by user so that
  "list my enrollments" is a single-partition read
- Lesson progress: a map column on the enrollment row, so that replacing an
  enrollment is one atomic single-row write

Concurrency: every row carries a ``version`` used by lightweight
transactions (compare-and-swap) in the store.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4


class EnrollmentStatus(str, Enum):
    """Enrollment lifecycle status."""

    ACTIVE = "active"
    UNENROLLED = "unenrolled"  # History kept, progress reports rejected


class PaymentStatus(str, Enum):
    """How access to the course was granted."""

    FREE = "free"
    PAID = "paid"


# ==============================================================================
# Helper Functions
# ==============================================================================


def ensure_utc_aware(dt: datetime | None) -> datetime | None:
    """Ensure datetime is UTC-aware (Cassandra returns naive datetimes)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

# Partition key: user_id (all of a user's enrollments in one partition)
# Clustering: course_id (at most one enrollment per user x course)
# lessons_progress: lesson_id -> (watched_duration_ms, completed)
ENROLLMENTS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.enrollments (
    user_id UUID,
    course_id UUID,
    enrollment_id UUID,
    payment_status TEXT,
    status TEXT,
    enrolled_at TIMESTAMP,
    lessons_progress MAP<TEXT, FROZEN<TUPLE<BIGINT, BOOLEAN>>>,
    progress_percent INT,
    last_accessed_at TIMESTAMP,
    last_lesson_id TEXT,
    completed_at TIMESTAMP,
    unenrolled_at TIMESTAMP,
    version INT,
    PRIMARY KEY ((user_id), course_id)
) WITH CLUSTERING ORDER BY (course_id ASC)
"""

# Lookup by enrollment_id (admin/support)
ENROLLMENTS_BY_ID_INDEX_CQL = """
CREATE INDEX IF NOT EXISTS enrollments_enrollment_id_idx
ON {keyspace}.enrollments (enrollment_id)
"""

ENROLLMENTS_TABLES_CQL = [
    ENROLLMENTS_TABLE_CQL,
    ENROLLMENTS_BY_ID_INDEX_CQL,
]


# ==============================================================================
# Entity Classes
# ==============================================================================


@dataclass(frozen=True, slots=True)
class LessonProgress:
    """Watch state of one lesson within an enrollment.

    ``watched_duration_ms`` only grows and ``completed`` only goes from
    False to True; both are enforced by the merge functions, not here.
    """

    lesson_id: str
    watched_duration_ms: int = 0
    completed: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "lesson_id": self.lesson_id,
            "watched_duration_ms": self.watched_duration_ms,
            "completed": self.completed,
        }


@dataclass(frozen=True)
class Enrollment:
    """A user's active or historical relationship to a course.

    Attributes:
        enrollment_id: Opaque identifier, fixed at enroll time
        user_id: User UUID
        course_id: Course UUID
        payment_status: How access was granted (free, paid)
        status: active or unenrolled
        enrolled_at: Creation timestamp
        lessons_progress: lesson_id -> LessonProgress
        progress_percent: Completed lessons over course lessons (0-100)
        last_accessed_at: Time of the last accepted progress report
        last_lesson_id: Lesson of the last accepted progress report
        completed_at: First time progress_percent reached 100
        unenrolled_at: Unenroll timestamp
        version: Store write counter, 0 if never persisted
    """

    user_id: UUID
    course_id: UUID
    enrollment_id: UUID = field(default_factory=uuid4)
    payment_status: PaymentStatus = PaymentStatus.FREE
    status: EnrollmentStatus = EnrollmentStatus.ACTIVE
    enrolled_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    lessons_progress: Mapping[str, LessonProgress] = field(default_factory=dict)
    progress_percent: int = 0
    last_accessed_at: datetime | None = None
    last_lesson_id: str | None = None
    completed_at: datetime | None = None
    unenrolled_at: datetime | None = None
    version: int = 0

    @property
    def is_active(self) -> bool:
        """Check if the enrollment accepts progress reports."""
        return self.status == EnrollmentStatus.ACTIVE

    @property
    def lessons_completed(self) -> int:
        """Number of lessons marked completed."""
        return sum(1 for lp in self.lessons_progress.values() if lp.completed)

    @classmethod
    def from_row(cls, row: Any) -> "Enrollment":
        """Create Enrollment instance from Cassandra row."""
        lessons = {
            lesson_id: LessonProgress(
                lesson_id=lesson_id,
                watched_duration_ms=watched or 0,
                completed=bool(completed),
            )
            for lesson_id, (watched, completed) in (row.lessons_progress or {}).items()
        }
        return cls(
            user_id=row.user_id,
            course_id=row.course_id,
            enrollment_id=row.enrollment_id,
            payment_status=PaymentStatus(row.payment_status or PaymentStatus.FREE),
            status=EnrollmentStatus(row.status or EnrollmentStatus.ACTIVE),
            enrolled_at=ensure_utc_aware(row.enrolled_at),
            lessons_progress=lessons,
            progress_percent=row.progress_percent or 0,
            last_accessed_at=ensure_utc_aware(row.last_accessed_at),
            last_lesson_id=row.last_lesson_id,
            completed_at=ensure_utc_aware(row.completed_at),
            unenrolled_at=ensure_utc_aware(row.unenrolled_at),
            version=row.version or 0,
        )

    def lessons_progress_column(self) -> dict[str, tuple[int, bool]]:
        """Lesson progress in the shape of the Cassandra map column."""
        return {
            lesson_id: (lp.watched_duration_ms, lp.completed)
            for lesson_id, lp in self.lessons_progress.items()
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary (persisted shape)."""
        return {
            "enrollment_id": self.enrollment_id,
            "user_id": self.user_id,
            "course_id": self.course_id,
            "payment_status": self.payment_status.value,
            "status": self.status.value,
            "enrolled_at": self.enrolled_at,
            "lessons_progress": [
                lp.to_dict() for lp in self.lessons_progress.values()
            ],
            "progress_percent": self.progress_percent,
            "last_accessed_at": self.last_accessed_at,
            "last_lesson_id": self.last_lesson_id,
            "completed_at": self.completed_at,
            "unenrolled_at": self.unenrolled_at,
            "version": self.version,
        }

    def __repr__(self) -> str:
        return (
            f"<Enrollment user={self.user_id} course={self.course_id} "
            f"{self.status.value} {self.progress_percent}% v{self.version}>"
        )
