"""Course outline entities read from the course catalog.

The catalog owns courses and lessons; this service only needs the ordered
lesson list (to count lessons and validate reports) and each lesson's
canonical duration.
"""

from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

import orjson


@dataclass(frozen=True, slots=True)
class LessonOutline:
    """A lesson as seen by progress tracking."""

    lesson_id: str
    duration_ms: int | None = None  # None for non-video content


@dataclass(frozen=True, slots=True)
class CourseOutline:
    """Ordered lessons of a course plus its pricing flag."""

    course_id: UUID
    lessons: tuple[LessonOutline, ...] = ()
    is_free: bool = False
    _by_id: dict[str, LessonOutline] = field(
        init=False, repr=False, compare=False, hash=False
    )

    def __post_init__(self) -> None:
        by_id = {lesson.lesson_id: lesson for lesson in self.lessons}
        object.__setattr__(self, "_by_id", by_id)

    @property
    def total_lessons(self) -> int:
        return len(self.lessons)

    def get_lesson(self, lesson_id: str) -> LessonOutline | None:
        """Find a lesson of this course by id."""
        return self._by_id.get(lesson_id)

    def to_json(self) -> bytes:
        """Serialize for the outline cache."""
        return orjson.dumps(
            {
                "course_id": str(self.course_id),
                "is_free": self.is_free,
                "lessons": [
                    [lesson.lesson_id, lesson.duration_ms] for lesson in self.lessons
                ],
            }
        )

    @classmethod
    def from_json(cls, data: str | bytes) -> "CourseOutline":
        """Deserialize an outline written by ``to_json``."""
        payload: dict[str, Any] = orjson.loads(data)
        return cls(
            course_id=UUID(payload["course_id"]),
            lessons=tuple(
                LessonOutline(lesson_id, duration_ms)
                for lesson_id, duration_ms in payload["lessons"]
            ),
            is_free=payload["is_free"],
        )
