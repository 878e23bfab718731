"""Per-workflow mutual exclusion.

Every mutation of a workflow runs while holding that workflow's lock, so two
actors hitting the same job are serialized while different jobs proceed in
parallel. Two backends:

    - LocalWorkflowLocks: asyncio locks, one process.
    - RedisWorkflowLocks: redis-py distributed locks with a lease, for several
      API workers sharing one database.

Both bound the wait by ``wait_seconds``; giving up raises ConflictError, which
callers may retry.

Usage:
    locks = LocalWorkflowLocks(wait_seconds=10)
    async with locks.acquire("job-42"):
        ...
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Protocol

import redis.asyncio as aioredis
from redis.exceptions import LockError

from secureshift.domain.exceptions import ConflictError
from secureshift.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from contextlib import AbstractAsyncContextManager

logger = get_logger(__name__)


class WorkflowLocks(Protocol):
    def acquire(self, workflow_id: str) -> AbstractAsyncContextManager[None]:
        """Async context manager holding the lock for ``workflow_id``."""
        ...


class LocalWorkflowLocks:
    """In-process locks keyed by workflow id.

    Entries are reference counted and dropped once nobody holds or waits on
    them, so the map does not grow with the number of workflows ever touched.
    """

    def __init__(self, wait_seconds: float = 10.0) -> None:
        self._wait_seconds = wait_seconds
        self._locks: dict[str, asyncio.Lock] = {}
        self._refs: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def acquire(self, workflow_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(workflow_id, asyncio.Lock())
        self._refs[workflow_id] = self._refs.get(workflow_id, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self._wait_seconds)
            except TimeoutError as err:
                logger.warning("lock.timeout", workflow_id=workflow_id, backend="local")
                raise ConflictError(workflow_id, "timed out waiting for the workflow lock") from err
            try:
                yield
            finally:
                lock.release()
        finally:
            self._refs[workflow_id] -= 1
            if self._refs[workflow_id] == 0:
                del self._refs[workflow_id]
                del self._locks[workflow_id]


class RedisWorkflowLocks:
    """Distributed locks stored under ``workflow-lock:<id>``.

    The lease (``lease_seconds``) frees the lock if a worker dies while
    holding it; the row lock and version column still protect the data.
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        lease_seconds: float = 30.0,
        wait_seconds: float = 10.0,
        prefix: str = "workflow-lock",
    ) -> None:
        self._redis = redis
        self._lease_seconds = lease_seconds
        self._wait_seconds = wait_seconds
        self._prefix = prefix

    @asynccontextmanager
    async def acquire(self, workflow_id: str) -> AsyncIterator[None]:
        lock = self._redis.lock(
            f"{self._prefix}:{workflow_id}",
            timeout=self._lease_seconds,
            blocking_timeout=self._wait_seconds,
        )
        acquired = await lock.acquire()
        if not acquired:
            logger.warning("lock.timeout", workflow_id=workflow_id, backend="redis")
            raise ConflictError(workflow_id, "timed out waiting for the workflow lock")
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError as exc:
                # Lease expired while we held it
                logger.warning("lock.release_failed", workflow_id=workflow_id, error=str(exc))


async def connect_redis(url: str) -> aioredis.Redis:
    """Open the Redis client used by RedisWorkflowLocks and verify connectivity."""
    client = aioredis.from_url(url, decode_responses=True)
    await client.ping()
    logger.info("redis.connected", url=url)
    return client
