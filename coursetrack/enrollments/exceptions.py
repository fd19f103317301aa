"""Enrollment and progress errors.

Every error carries a human-readable ``message`` and a machine ``code`` that
the HTTP layer maps to a status code.
"""


class EnrollmentError(Exception):
    """Base enrollment error."""

    def __init__(self, message: str, code: str = "enrollment_error"):
        self.message = message
        self.code = code
        super().__init__(message)


class InvalidReportError(EnrollmentError):
    """Malformed progress report; rejected without touching state."""

    def __init__(self, message: str = "Invalid progress report"):
        super().__init__(message, "invalid_report")


class InvalidCursorError(EnrollmentError):
    """Pagination cursor that was not issued by this service."""

    def __init__(self, message: str = "Invalid pagination cursor"):
        super().__init__(message, "invalid_cursor")


class NotEnrolledError(EnrollmentError):
    """User has no (active) enrollment in the course."""

    def __init__(self, message: str = "User is not enrolled in this course"):
        super().__init__(message, "not_enrolled")


class AlreadyEnrolledError(EnrollmentError):
    """User already has an active enrollment in the course."""

    def __init__(self, message: str = "User is already enrolled in this course"):
        super().__init__(message, "already_enrolled")


class EnrollmentNotActiveError(EnrollmentError):
    """Enrollment was unenrolled and no longer accepts progress."""

    def __init__(self, message: str = "Enrollment is not active"):
        super().__init__(message, "enrollment_not_active")


class CourseNotFoundError(EnrollmentError):
    """Course is unknown to the catalog."""

    def __init__(self, message: str = "Course not found"):
        super().__init__(message, "course_not_found")


class PaymentRequiredError(EnrollmentError):
    """Paid course; access has to be granted by checkout."""

    def __init__(self, message: str = "This course must be purchased before enrolling"):
        super().__init__(message, "payment_required")


class LockTimeoutError(EnrollmentError):
    """Per-enrollment lock could not be acquired in time."""

    def __init__(self, message: str = "Enrollment is busy, try again"):
        super().__init__(message, "lock_timeout")


class StorageError(EnrollmentError):
    """Enrollment store unavailable; safe to retry the whole operation."""

    def __init__(
        self,
        message: str = "Enrollment storage unavailable",
        code: str = "storage_unavailable",
    ):
        super().__init__(message, code)


class ConcurrentModificationError(StorageError):
    """Compare-and-swap lost: the stored version moved since it was read."""

    def __init__(self, message: str = "Enrollment was modified concurrently"):
        super().__init__(message, "concurrent_modification")
