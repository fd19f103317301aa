"""Read-only course catalog access."""

from .models import CourseOutline, LessonOutline


__all__ = ["CourseOutline", "LessonOutline"]
