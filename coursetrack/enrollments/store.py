"""Enrollment persistence.

- CassandraEnrollmentStore: ``enrollments`` table with lightweight
  transactions guarding every write
- InMemoryEnrollmentStore: dict-backed store with the same compare-and-swap
  rules, for tests and local development

``put`` always writes the complete record. A record with ``version == 0`` is
only inserted when the row does not exist yet; any other record replaces the
row only while the stored version still equals its own. The stored record
comes back with ``version + 1``.
"""

from dataclasses import replace
from typing import TYPE_CHECKING, Protocol
from uuid import UUID

import structlog
from cassandra import DriverException
from cassandra.cluster import NoHostAvailable

from .exceptions import ConcurrentModificationError, StorageError
from .models import Enrollment


if TYPE_CHECKING:
    from cassandra.cluster import Session

logger = structlog.get_logger(__name__)

# Driver failures that mean "storage unavailable, try again later"
CASSANDRA_ERRORS = (DriverException, NoHostAvailable)


class EnrollmentStore(Protocol):
    async def get(self, user_id: UUID, course_id: UUID) -> Enrollment | None: ...

    async def get_by_id(self, enrollment_id: UUID) -> Enrollment | None: ...

    async def put(self, enrollment: Enrollment) -> Enrollment: ...

    async def list_by_user(self, user_id: UUID) -> list[Enrollment]: ...

    async def list_all(
        self, limit: int, after: tuple[UUID, UUID] | None = None
    ) -> list[Enrollment]: ...


def _newest_first(enrollments: list[Enrollment]) -> list[Enrollment]:
    return sorted(enrollments, key=lambda e: e.enrolled_at, reverse=True)


# ==============================================================================
# Cassandra
# ==============================================================================


class CassandraEnrollmentStore:
    """Enrollment store on Cassandra."""

    def __init__(self, session: "Session", keyspace: str):
        """Initialize with Cassandra session."""
        self.session = session
        self.keyspace = keyspace
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements for efficient execution."""
        self._get_enrollment = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.enrollments
            WHERE user_id = ? AND course_id = ?
        """)

        self._get_enrollment_by_id = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.enrollments
            WHERE enrollment_id = ?
        """)

        self._get_user_enrollments = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.enrollments
            WHERE user_id = ?
        """)

        # Full-table paging: rest of the cursor partition, then later tokens
        self._list_enrollments = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.enrollments LIMIT ?
        """)

        self._list_partition_after = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.enrollments
            WHERE user_id = ? AND course_id > ?
            LIMIT ?
        """)

        self._list_after_token = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.enrollments
            WHERE token(user_id) > token(?)
            LIMIT ?
        """)

        self._insert_enrollment = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.enrollments
            (user_id, course_id, enrollment_id, payment_status, status,
             enrolled_at, lessons_progress, progress_percent, last_accessed_at,
             last_lesson_id, completed_at, unenrolled_at, version)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            IF NOT EXISTS
        """)

        self._replace_enrollment = self.session.prepare(f"""
            UPDATE {self.keyspace}.enrollments
            SET enrollment_id = ?, payment_status = ?, status = ?,
                enrolled_at = ?, lessons_progress = ?, progress_percent = ?,
                last_accessed_at = ?, last_lesson_id = ?, completed_at = ?,
                unenrolled_at = ?, version = ?
            WHERE user_id = ? AND course_id = ?
            IF version = ?
        """)

    async def get(self, user_id: UUID, course_id: UUID) -> Enrollment | None:
        """Get enrollment by user and course."""
        try:
            result = await self.session.aexecute(
                self._get_enrollment, [user_id, course_id]
            )
        except CASSANDRA_ERRORS as e:
            raise self._storage_error("get", e) from e
        row = result.one()
        return Enrollment.from_row(row) if row else None

    async def get_by_id(self, enrollment_id: UUID) -> Enrollment | None:
        """Get enrollment by its id (secondary index)."""
        try:
            result = await self.session.aexecute(
                self._get_enrollment_by_id, [enrollment_id]
            )
        except CASSANDRA_ERRORS as e:
            raise self._storage_error("get_by_id", e) from e
        row = result.one()
        return Enrollment.from_row(row) if row else None

    async def list_by_user(self, user_id: UUID) -> list[Enrollment]:
        """Get all enrollments of a user, newest first."""
        try:
            rows = await self.session.aexecute(self._get_user_enrollments, [user_id])
        except CASSANDRA_ERRORS as e:
            raise self._storage_error("list_by_user", e) from e
        return _newest_first([Enrollment.from_row(row) for row in rows])

    async def list_all(
        self, limit: int, after: tuple[UUID, UUID] | None = None
    ) -> list[Enrollment]:
        """Get up to ``limit`` enrollments in token order.

        Args:
            limit: Page size
            after: (user_id, course_id) of the last row of the previous page
        """
        try:
            if after is None:
                rows = list(
                    await self.session.aexecute(self._list_enrollments, [limit])
                )
            else:
                user_id, course_id = after
                rows = list(
                    await self.session.aexecute(
                        self._list_partition_after, [user_id, course_id, limit]
                    )
                )
                if len(rows) < limit:
                    rows.extend(
                        await self.session.aexecute(
                            self._list_after_token, [user_id, limit - len(rows)]
                        )
                    )
        except CASSANDRA_ERRORS as e:
            raise self._storage_error("list_all", e) from e
        return [Enrollment.from_row(row) for row in rows]

    async def put(self, enrollment: Enrollment) -> Enrollment:
        """Write the full record if its version is still current.

        Raises:
            ConcurrentModificationError: If the stored version moved
            StorageError: If Cassandra is unavailable
        """
        stored = replace(enrollment, version=enrollment.version + 1)

        try:
            if enrollment.version == 0:
                result = await self.session.aexecute(
                    self._insert_enrollment,
                    [
                        stored.user_id,
                        stored.course_id,
                        stored.enrollment_id,
                        stored.payment_status.value,
                        stored.status.value,
                        stored.enrolled_at,
                        stored.lessons_progress_column(),
                        stored.progress_percent,
                        stored.last_accessed_at,
                        stored.last_lesson_id,
                        stored.completed_at,
                        stored.unenrolled_at,
                        stored.version,
                    ],
                )
            else:
                result = await self.session.aexecute(
                    self._replace_enrollment,
                    [
                        stored.enrollment_id,
                        stored.payment_status.value,
                        stored.status.value,
                        stored.enrolled_at,
                        stored.lessons_progress_column(),
                        stored.progress_percent,
                        stored.last_accessed_at,
                        stored.last_lesson_id,
                        stored.completed_at,
                        stored.unenrolled_at,
                        stored.version,
                        stored.user_id,
                        stored.course_id,
                        enrollment.version,
                    ],
                )
        except CASSANDRA_ERRORS as e:
            raise self._storage_error("put", e) from e

        if not result.was_applied:
            logger.info(
                "enrollment_cas_rejected",
                user_id=str(enrollment.user_id),
                course_id=str(enrollment.course_id),
                expected_version=enrollment.version,
            )
            raise ConcurrentModificationError

        return stored

    def _storage_error(self, operation: str, error: Exception) -> StorageError:
        logger.error(
            "enrollment_store_failed",
            operation=operation,
            error=str(error),
            error_type=type(error).__name__,
        )
        return StorageError()


# ==============================================================================
# In-memory
# ==============================================================================


class InMemoryEnrollmentStore:
    """Enrollment store backed by a dict keyed by (user_id, course_id)."""

    def __init__(self) -> None:
        self._rows: dict[tuple[UUID, UUID], Enrollment] = {}

    async def get(self, user_id: UUID, course_id: UUID) -> Enrollment | None:
        return self._rows.get((user_id, course_id))

    async def get_by_id(self, enrollment_id: UUID) -> Enrollment | None:
        for enrollment in self._rows.values():
            if enrollment.enrollment_id == enrollment_id:
                return enrollment
        return None

    async def list_by_user(self, user_id: UUID) -> list[Enrollment]:
        return _newest_first(
            [e for (uid, _), e in self._rows.items() if uid == user_id]
        )

    async def list_all(
        self, limit: int, after: tuple[UUID, UUID] | None = None
    ) -> list[Enrollment]:
        keys = sorted(self._rows)
        if after is not None:
            keys = [k for k in keys if k > after]
        return [self._rows[k] for k in keys[:limit]]

    async def put(self, enrollment: Enrollment) -> Enrollment:
        key = (enrollment.user_id, enrollment.course_id)
        current = self._rows.get(key)
        current_version = current.version if current else 0
        if current_version != enrollment.version:
            raise ConcurrentModificationError

        stored = replace(enrollment, version=enrollment.version + 1)
        self._rows[key] = stored
        return stored
