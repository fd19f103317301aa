"""Enrollment and progress reconciliation module.

Provides:
- Enrollment lifecycle (enroll, grant access, unenroll)
- Progress report merging with sticky lesson completion
- Course completion percentage
- Lesson resume positions
"""

from .exceptions import (
    AlreadyEnrolledError,
    ConcurrentModificationError,
    CourseNotFoundError,
    EnrollmentError,
    EnrollmentNotActiveError,
    InvalidCursorError,
    InvalidReportError,
    LockTimeoutError,
    NotEnrolledError,
    PaymentRequiredError,
    StorageError,
)
from .models import (
    ENROLLMENTS_TABLES_CQL,
    Enrollment,
    EnrollmentStatus,
    LessonProgress,
    PaymentStatus,
)


__all__ = [
    "ENROLLMENTS_TABLES_CQL",
    "AlreadyEnrolledError",
    "ConcurrentModificationError",
    "CourseNotFoundError",
    "Enrollment",
    "EnrollmentError",
    "EnrollmentNotActiveError",
    "EnrollmentStatus",
    "InvalidCursorError",
    "InvalidReportError",
    "LessonProgress",
    "LockTimeoutError",
    "NotEnrolledError",
    "PaymentRequiredError",
    "PaymentStatus",
    "StorageError",
]
