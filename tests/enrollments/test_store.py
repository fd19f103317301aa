"""Tests for enrollment stores.

The Cassandra store runs against a mocked session (cassandra-asyncio-driver
``aexecute``), the in-memory store for real.
"""

from dataclasses import replace
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, Mock
from uuid import UUID, uuid4

import pytest
from cassandra import OperationTimedOut
from cassandra.cluster import NoHostAvailable, Session

from coursetrack.enrollments.exceptions import (
    ConcurrentModificationError,
    StorageError,
)
from coursetrack.enrollments.models import (
    Enrollment,
    EnrollmentStatus,
    LessonProgress,
    PaymentStatus,
)
from coursetrack.enrollments.store import (
    CassandraEnrollmentStore,
    InMemoryEnrollmentStore,
)


@pytest.fixture
def enrollment(user_id: UUID, course_id: UUID) -> Enrollment:
    """Unsaved enrollment with one lesson watched."""
    return Enrollment(
        user_id=user_id,
        course_id=course_id,
        lessons_progress={
            "L1": LessonProgress(lesson_id="L1", watched_duration_ms=5400, completed=True)
        },
        progress_percent=25,
    )


# ==============================================================================
# In-memory store
# ==============================================================================


class TestInMemoryEnrollmentStore:
    """Compare-and-swap rules of the in-memory store."""

    @pytest.mark.asyncio
    async def test_insert_then_get(
        self, store: InMemoryEnrollmentStore, enrollment: Enrollment
    ) -> None:
        stored = await store.put(enrollment)

        assert stored.version == 1
        assert await store.get(enrollment.user_id, enrollment.course_id) == stored
        assert await store.get_by_id(enrollment.enrollment_id) == stored

    @pytest.mark.asyncio
    async def test_missing(self, store: InMemoryEnrollmentStore) -> None:
        assert await store.get(uuid4(), uuid4()) is None
        assert await store.get_by_id(uuid4()) is None

    @pytest.mark.asyncio
    async def test_second_insert_rejected(
        self, store: InMemoryEnrollmentStore, enrollment: Enrollment
    ) -> None:
        """Two fresh records for the same pair: only the first lands."""
        await store.put(enrollment)

        with pytest.raises(ConcurrentModificationError):
            await store.put(replace(enrollment, enrollment_id=uuid4()))

    @pytest.mark.asyncio
    async def test_replace_with_current_version(
        self, store: InMemoryEnrollmentStore, enrollment: Enrollment
    ) -> None:
        stored = await store.put(enrollment)
        updated = await store.put(replace(stored, progress_percent=50))

        assert updated.version == 2
        assert updated.progress_percent == 50

    @pytest.mark.asyncio
    async def test_stale_version_rejected(
        self, store: InMemoryEnrollmentStore, enrollment: Enrollment
    ) -> None:
        """A writer holding an old read loses and the row is unchanged."""
        stored = await store.put(enrollment)
        await store.put(replace(stored, progress_percent=50))

        with pytest.raises(ConcurrentModificationError):
            await store.put(replace(stored, progress_percent=75))

        current = await store.get(enrollment.user_id, enrollment.course_id)
        assert current is not None
        assert current.progress_percent == 50

    @pytest.mark.asyncio
    async def test_list_by_user_newest_first(
        self, store: InMemoryEnrollmentStore, user_id: UUID
    ) -> None:
        now = datetime.now(UTC)
        older = Enrollment(user_id=user_id, course_id=uuid4(), enrolled_at=now - timedelta(days=2))
        newer = Enrollment(user_id=user_id, course_id=uuid4(), enrolled_at=now)
        other_user = Enrollment(user_id=uuid4(), course_id=uuid4())

        for e in (older, newer, other_user):
            await store.put(e)

        result = await store.list_by_user(user_id)
        assert [e.enrollment_id for e in result] == [
            newer.enrollment_id,
            older.enrollment_id,
        ]

    @pytest.mark.asyncio
    async def test_list_all_pages(self, store: InMemoryEnrollmentStore) -> None:
        enrollments = [Enrollment(user_id=uuid4(), course_id=uuid4()) for _ in range(3)]
        for e in enrollments:
            await store.put(e)

        first = await store.list_all(2)
        last = first[-1]
        rest = await store.list_all(2, after=(last.user_id, last.course_id))

        assert len(first) == 2
        assert len(rest) == 1
        assert {e.enrollment_id for e in first + rest} == {
            e.enrollment_id for e in enrollments
        }


# ==============================================================================
# Cassandra store
# ==============================================================================


@pytest.fixture
def mock_session():
    """Mock Cassandra session."""
    session = Mock(spec=Session)
    session.prepare = Mock(side_effect=lambda cql: Mock(query_string=cql))
    session.aexecute = AsyncMock()
    return session


@pytest.fixture
def cassandra_store(mock_session) -> CassandraEnrollmentStore:
    """CassandraEnrollmentStore with mocked session."""
    return CassandraEnrollmentStore(session=mock_session, keyspace="test_keyspace")


def make_row(enrollment: Enrollment) -> Mock:
    """Cassandra row as returned by the driver (naive timestamps)."""
    return Mock(
        user_id=enrollment.user_id,
        course_id=enrollment.course_id,
        enrollment_id=enrollment.enrollment_id,
        payment_status=enrollment.payment_status.value,
        status=enrollment.status.value,
        enrolled_at=enrollment.enrolled_at.replace(tzinfo=None),
        lessons_progress=enrollment.lessons_progress_column() or None,
        progress_percent=enrollment.progress_percent,
        last_accessed_at=None,
        last_lesson_id=enrollment.last_lesson_id,
        completed_at=None,
        unenrolled_at=None,
        version=enrollment.version,
    )


class TestCassandraEnrollmentStore:
    """Statement use and error mapping of the Cassandra store."""

    def test_statements_prepared(self, cassandra_store, mock_session) -> None:
        queries = [c.args[0] for c in mock_session.prepare.call_args_list]
        assert any("IF NOT EXISTS" in q for q in queries)
        assert any("IF version = ?" in q for q in queries)
        assert all("test_keyspace.enrollments" in q for q in queries)

    @pytest.mark.asyncio
    async def test_get_maps_row(
        self, cassandra_store, mock_session, enrollment: Enrollment
    ) -> None:
        saved = replace(enrollment, version=3, payment_status=PaymentStatus.PAID)
        mock_session.aexecute.return_value = Mock(one=Mock(return_value=make_row(saved)))

        result = await cassandra_store.get(saved.user_id, saved.course_id)

        assert result is not None
        assert result.version == 3
        assert result.payment_status == PaymentStatus.PAID
        assert result.lessons_progress["L1"].completed is True
        assert result.enrolled_at.tzinfo is UTC
        args = mock_session.aexecute.call_args.args
        assert args[1] == [saved.user_id, saved.course_id]

    @pytest.mark.asyncio
    async def test_get_missing(self, cassandra_store, mock_session) -> None:
        mock_session.aexecute.return_value = Mock(one=Mock(return_value=None))
        assert await cassandra_store.get(uuid4(), uuid4()) is None

    @pytest.mark.asyncio
    async def test_insert_uses_lwt(
        self, cassandra_store, mock_session, enrollment: Enrollment
    ) -> None:
        mock_session.aexecute.return_value = Mock(was_applied=True)

        stored = await cassandra_store.put(enrollment)

        assert stored.version == 1
        statement, params = mock_session.aexecute.call_args.args
        assert "IF NOT EXISTS" in statement.query_string
        assert params[6] == {"L1": (5400, True)}
        assert params[-1] == 1

    @pytest.mark.asyncio
    async def test_replace_conditions_on_read_version(
        self, cassandra_store, mock_session, enrollment: Enrollment
    ) -> None:
        mock_session.aexecute.return_value = Mock(was_applied=True)
        current = replace(enrollment, version=4, status=EnrollmentStatus.UNENROLLED)

        stored = await cassandra_store.put(current)

        assert stored.version == 5
        statement, params = mock_session.aexecute.call_args.args
        assert "IF version = ?" in statement.query_string
        assert params[2] == "unenrolled"
        assert params[10] == 5  # new version
        assert params[-1] == 4  # expected version

    @pytest.mark.asyncio
    async def test_rejected_cas(
        self, cassandra_store, mock_session, enrollment: Enrollment
    ) -> None:
        mock_session.aexecute.return_value = Mock(was_applied=False)

        with pytest.raises(ConcurrentModificationError):
            await cassandra_store.put(enrollment)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [OperationTimedOut("timed out"), NoHostAvailable("no hosts", {})],
    )
    async def test_driver_errors_become_storage_errors(
        self, cassandra_store, mock_session, enrollment: Enrollment, error
    ) -> None:
        mock_session.aexecute.side_effect = error

        with pytest.raises(StorageError) as exc_info:
            await cassandra_store.put(enrollment)
        assert not isinstance(exc_info.value, ConcurrentModificationError)

        with pytest.raises(StorageError):
            await cassandra_store.get(enrollment.user_id, enrollment.course_id)

    @pytest.mark.asyncio
    async def test_list_by_user_sorted(
        self, cassandra_store, mock_session, user_id: UUID
    ) -> None:
        now = datetime.now(UTC)
        older = Enrollment(user_id=user_id, course_id=uuid4(), enrolled_at=now - timedelta(hours=1))
        newer = Enrollment(user_id=user_id, course_id=uuid4(), enrolled_at=now)
        mock_session.aexecute.return_value = [make_row(older), make_row(newer)]

        result = await cassandra_store.list_by_user(user_id)

        assert [e.course_id for e in result] == [newer.course_id, older.course_id]

    @pytest.mark.asyncio
    async def test_list_all_first_page(
        self, cassandra_store, mock_session, enrollment: Enrollment
    ) -> None:
        mock_session.aexecute.return_value = [make_row(enrollment)]

        result = await cassandra_store.list_all(10)

        assert [e.enrollment_id for e in result] == [enrollment.enrollment_id]
        statement, params = mock_session.aexecute.call_args.args
        assert "WHERE" not in statement.query_string
        assert params == [10]

    @pytest.mark.asyncio
    async def test_list_all_continues_into_later_partitions(
        self, cassandra_store, mock_session, enrollment: Enrollment
    ) -> None:
        """Rest of the cursor's partition first, then following tokens."""
        same_user = replace(enrollment, course_id=uuid4(), enrollment_id=uuid4())
        other_user = Enrollment(user_id=uuid4(), course_id=uuid4())
        mock_session.aexecute.side_effect = [
            [make_row(same_user)],
            [make_row(other_user)],
        ]

        result = await cassandra_store.list_all(
            3, after=(enrollment.user_id, enrollment.course_id)
        )

        assert [e.enrollment_id for e in result] == [
            same_user.enrollment_id,
            other_user.enrollment_id,
        ]
        (partition_call, token_call) = mock_session.aexecute.call_args_list
        assert "course_id > ?" in partition_call.args[0].query_string
        assert partition_call.args[1] == [enrollment.user_id, enrollment.course_id, 3]
        assert "token(user_id) > token(?)" in token_call.args[0].query_string
        assert token_call.args[1] == [enrollment.user_id, 2]

    @pytest.mark.asyncio
    async def test_list_all_full_partition_page(
        self, cassandra_store, mock_session, enrollment: Enrollment
    ) -> None:
        mock_session.aexecute.return_value = [make_row(enrollment)]

        await cassandra_store.list_all(1, after=(enrollment.user_id, uuid4()))

        assert mock_session.aexecute.await_count == 1
