"""Per-enrollment mutual exclusion.

Every load -> merge -> persist cycle on one (user, course) pair runs inside
``lock(key, timeout)``. Different keys never wait on each other.

- LocalKeyedLock: asyncio locks, enough for a single process
- RedisKeyedLock: Redis locks shared by every instance
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Protocol
from uuid import UUID

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

from .exceptions import LockTimeoutError, StorageError


logger = structlog.get_logger(__name__)


def enrollment_lock_key(user_id: UUID, course_id: UUID) -> str:
    return f"{user_id}:{course_id}"


class KeyedLock(Protocol):
    def lock(self, key: str, timeout: float) -> AbstractAsyncContextManager[None]: ...


class LocalKeyedLock:
    """One asyncio.Lock per key, dropped once nobody holds or waits for it."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def lock(self, key: str, timeout: float) -> AsyncIterator[None]:
        """Hold the lock for ``key``.

        Raises:
            LockTimeoutError: If the lock is not acquired within ``timeout``
        """
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout)
            except TimeoutError:
                logger.warning("enrollment_lock_timeout", key=key, timeout=timeout)
                raise LockTimeoutError from None
            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]


class RedisKeyedLock:
    """Redis lock per key, for deployments with several instances.

    ``ttl_seconds`` bounds how long a crashed holder can block the key.
    """

    def __init__(
        self,
        redis: Redis,
        ttl_seconds: float = 10.0,
        prefix: str = "enrollment-lock",
    ):
        self.redis = redis
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    @asynccontextmanager
    async def lock(self, key: str, timeout: float) -> AsyncIterator[None]:
        """Hold the lock for ``key``.

        Raises:
            LockTimeoutError: If the lock is not acquired within ``timeout``
            StorageError: If Redis is unreachable
        """
        lock = self.redis.lock(
            f"{self.prefix}:{key}",
            timeout=self.ttl_seconds,
            blocking_timeout=timeout,
        )
        try:
            acquired = await lock.acquire()
        except RedisError as e:
            logger.error("enrollment_lock_failed", key=key, error=str(e))
            raise StorageError("Lock backend unavailable") from e

        if not acquired:
            logger.warning("enrollment_lock_timeout", key=key, timeout=timeout)
            raise LockTimeoutError

        try:
            yield
        finally:
            try:
                await lock.release()
            except RedisError as e:
                # Expired while held; the store CAS still rejects stale writes
                logger.warning("enrollment_lock_release_failed", key=key, error=str(e))
