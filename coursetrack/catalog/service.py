"""Read-only course catalog adapters.

- CassandraCourseCatalog: reads the marketplace course tables
  (courses -> course_modules -> module_lessons -> lessons)
- StaticCourseCatalog: dict-backed catalog for tests and local development
"""

from typing import TYPE_CHECKING, Protocol
from uuid import UUID

import structlog
from redis.exceptions import RedisError

from coursetrack.enrollments.exceptions import StorageError
from coursetrack.enrollments.store import CASSANDRA_ERRORS

from .models import CourseOutline, LessonOutline


if TYPE_CHECKING:
    from cassandra.cluster import Session
    from redis.asyncio import Redis

logger = structlog.get_logger(__name__)


class CourseCatalog(Protocol):
    async def get_outline(self, course_id: UUID) -> CourseOutline | None: ...


class StaticCourseCatalog:
    """Catalog backed by an in-memory mapping of outlines."""

    def __init__(self, outlines: list[CourseOutline] | None = None) -> None:
        self._outlines: dict[UUID, CourseOutline] = {
            o.course_id: o for o in outlines or []
        }

    def add(self, outline: CourseOutline) -> None:
        self._outlines[outline.course_id] = outline

    async def get_outline(self, course_id: UUID) -> CourseOutline | None:
        return self._outlines.get(course_id)


class CassandraCourseCatalog:
    """Catalog reading course structure from Cassandra.

    Outlines are cached in Redis for ``cache_ttl_seconds`` when a client is
    given. Unknown courses are never cached, so a course published after a
    miss is found on the next lookup.
    """

    CACHE_PREFIX = "catalog:outline"

    def __init__(
        self,
        session: "Session",
        keyspace: str,
        redis: "Redis | None" = None,
        cache_ttl_seconds: int = 60,
    ):
        self.session = session
        self.keyspace = keyspace
        self.redis = redis
        self.cache_ttl_seconds = cache_ttl_seconds
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements for efficient execution."""
        self._get_course = self.session.prepare(f"""
            SELECT id, is_free FROM {self.keyspace}.courses WHERE id = ?
        """)

        self._get_course_modules = self.session.prepare(f"""
            SELECT module_id FROM {self.keyspace}.course_modules
            WHERE course_id = ?
        """)

        self._get_module_lessons = self.session.prepare(f"""
            SELECT lesson_id FROM {self.keyspace}.module_lessons
            WHERE module_id = ?
        """)

        self._get_lesson = self.session.prepare(f"""
            SELECT id, duration_seconds FROM {self.keyspace}.lessons WHERE id = ?
        """)

    async def get_outline(self, course_id: UUID) -> CourseOutline | None:
        """Get the ordered lesson outline of a course, or None if unknown."""
        cached = await self._get_cached(course_id)
        if cached is not None:
            return cached

        try:
            outline = await self._load_outline(course_id)
        except CASSANDRA_ERRORS as e:
            logger.error(
                "catalog_read_failed", course_id=str(course_id), error=str(e)
            )
            raise StorageError("Course catalog unavailable") from e

        if outline is not None:
            await self._set_cached(outline)
        return outline

    def _cache_key(self, course_id: UUID) -> str:
        return f"{self.CACHE_PREFIX}:{course_id}"

    async def _get_cached(self, course_id: UUID) -> CourseOutline | None:
        if not self.redis or self.cache_ttl_seconds <= 0:
            return None
        try:
            cached = await self.redis.get(self._cache_key(course_id))
        except RedisError as e:
            logger.warning(
                "catalog_cache_read_failed", course_id=str(course_id), error=str(e)
            )
            return None
        return CourseOutline.from_json(cached) if cached else None

    async def _set_cached(self, outline: CourseOutline) -> None:
        if not self.redis or self.cache_ttl_seconds <= 0:
            return
        try:
            await self.redis.setex(
                self._cache_key(outline.course_id),
                self.cache_ttl_seconds,
                outline.to_json(),
            )
        except RedisError as e:
            logger.warning(
                "catalog_cache_write_failed",
                course_id=str(outline.course_id),
                error=str(e),
            )

    async def _load_outline(self, course_id: UUID) -> CourseOutline | None:
        result = await self.session.aexecute(self._get_course, [course_id])
        course_row = result.one()
        if course_row is None:
            return None

        # Clustering order on (position, ...) keeps modules and lessons ordered
        lesson_ids: list[UUID] = []
        module_rows = await self.session.aexecute(self._get_course_modules, [course_id])
        for module_row in module_rows:
            lesson_rows = await self.session.aexecute(
                self._get_module_lessons, [module_row.module_id]
            )
            for lesson_row in lesson_rows:
                # A reusable lesson linked twice still counts once
                if lesson_row.lesson_id not in lesson_ids:
                    lesson_ids.append(lesson_row.lesson_id)

        lessons = []
        for lesson_id in lesson_ids:
            result = await self.session.aexecute(self._get_lesson, [lesson_id])
            row = result.one()
            duration_seconds = row.duration_seconds if row else None
            lessons.append(
                LessonOutline(
                    lesson_id=str(lesson_id),
                    duration_ms=duration_seconds * 1000 if duration_seconds else None,
                )
            )

        return CourseOutline(
            course_id=course_id,
            lessons=tuple(lessons),
            is_free=bool(course_row.is_free),
        )
