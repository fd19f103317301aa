"""Shared fixtures.

Settings are read from the environment once (``get_settings`` is cached), so
the test environment is set before anything from coursetrack is imported.
"""

import os
import tempfile

os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("MASTER_API_KEY", "test-master-api-key")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="coursetrack-logs-"))

from collections.abc import Iterator  # noqa: E402
from uuid import UUID, uuid4  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from coursetrack.auth.permissions import UserRole  # noqa: E402
from coursetrack.auth.security import create_access_token  # noqa: E402
from coursetrack.catalog.models import CourseOutline, LessonOutline  # noqa: E402
from coursetrack.catalog.service import StaticCourseCatalog  # noqa: E402
from coursetrack.enrollments.locks import LocalKeyedLock  # noqa: E402
from coursetrack.enrollments.service import EnrollmentService  # noqa: E402
from coursetrack.enrollments.store import InMemoryEnrollmentStore  # noqa: E402


LESSON_DURATION_MS = 6000


def make_outline(course_id: UUID, lessons: int = 4, is_free: bool = True) -> CourseOutline:
    """Course with lessons L1..Ln of 6 seconds each."""
    return CourseOutline(
        course_id=course_id,
        lessons=tuple(
            LessonOutline(lesson_id=f"L{i}", duration_ms=LESSON_DURATION_MS)
            for i in range(1, lessons + 1)
        ),
        is_free=is_free,
    )


@pytest.fixture
def user_id() -> UUID:
    """Test user ID."""
    return uuid4()


@pytest.fixture
def course_id() -> UUID:
    """Free 4-lesson course ID."""
    return uuid4()


@pytest.fixture
def paid_course_id() -> UUID:
    """Paid 4-lesson course ID."""
    return uuid4()


@pytest.fixture
def catalog(course_id: UUID, paid_course_id: UUID) -> StaticCourseCatalog:
    """Catalog with one free and one paid course."""
    return StaticCourseCatalog(
        [
            make_outline(course_id),
            make_outline(paid_course_id, is_free=False),
        ]
    )


@pytest.fixture
def store() -> InMemoryEnrollmentStore:
    """Empty in-memory enrollment store."""
    return InMemoryEnrollmentStore()


@pytest.fixture
def enrollment_service(
    store: InMemoryEnrollmentStore, catalog: StaticCourseCatalog
) -> EnrollmentService:
    """EnrollmentService over in-memory collaborators, without retry delays."""
    return EnrollmentService(
        store=store,
        catalog=catalog,
        lock=LocalKeyedLock(),
        lock_timeout_seconds=1.0,
        retry_backoff_seconds=0,
    )


@pytest.fixture
def client(enrollment_service: EnrollmentService) -> Iterator[TestClient]:
    """Test client with the enrollment service wired into app state.

    The lifespan is not run, so no database connection is attempted.
    """
    from coursetrack.main import app

    app.state.enrollment_service = enrollment_service
    yield TestClient(app)
    app.state.enrollment_service = None


def _bearer(user_id: UUID, role: UserRole = UserRole.STUDENT) -> dict[str, str]:
    token = create_access_token(
        {"sub": str(user_id), "email": "student@example.com", "role": role.value}
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def bearer():
    """Factory for Authorization headers of any user and role."""
    return _bearer


@pytest.fixture
def auth_headers(user_id: UUID) -> dict[str, str]:
    """Authorization header for the test user."""
    return _bearer(user_id)
