"""Per-session turn serialization.

A turn holds its session's lock from load to save. Different sessions never
share a lock.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Protocol
from uuid import UUID

from redis.asyncio import Redis
from redis.exceptions import LockError, LockNotOwnedError

from backend.app.errors import SessionBusyError
from backend.app.utils.metrics import record_session_busy

logger = logging.getLogger(__name__)


class SessionLockManager(Protocol):
    """Serializes turns per session."""

    def hold(self, session_id: UUID) -> AbstractAsyncContextManager[None]: ...

    async def is_held(self, session_id: UUID) -> bool: ...


class InMemorySessionLockManager:
    """One asyncio.Lock per session id, for a single process.

    A session's lock lives only while something holds or waits for it.
    """

    def __init__(self) -> None:
        self._locks: dict[UUID, asyncio.Lock] = {}
        self._users: dict[UUID, int] = {}

    def __len__(self) -> int:
        """Sessions whose lock is currently held or awaited."""
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, session_id: UUID) -> AsyncIterator[None]:
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        self._users[session_id] = self._users.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[session_id] -= 1
            if not self._users[session_id]:
                del self._users[session_id]
                del self._locks[session_id]

    async def is_held(self, session_id: UUID) -> bool:
        lock = self._locks.get(session_id)
        return lock is not None and lock.locked()


class RedisSessionLockManager:
    """Redis lock named ``session-lock:<id>``, shared across processes."""

    def __init__(self, redis: Redis, timeout_sec: int = 60, blocking_timeout_sec: float | None = None) -> None:
        self._redis = redis
        self._timeout = timeout_sec
        self._blocking_timeout = blocking_timeout_sec if blocking_timeout_sec is not None else timeout_sec

    @staticmethod
    def key(session_id: UUID) -> str:
        return f"session-lock:{session_id}"

    @asynccontextmanager
    async def hold(self, session_id: UUID) -> AsyncIterator[None]:
        """Hold the session's lock.

        Raises:
            SessionBusyError: The lock was not acquired within the blocking timeout
        """
        lock = self._redis.lock(self.key(session_id), timeout=self._timeout, blocking_timeout=self._blocking_timeout)
        try:
            acquired = await lock.acquire()
        except LockError as e:
            record_session_busy()
            raise SessionBusyError(f"Session {session_id} is busy", session_id=session_id) from e
        if not acquired:
            record_session_busy()
            raise SessionBusyError(
                f"Session {session_id} is busy", session_id=session_id, waited_sec=self._blocking_timeout
            )
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockNotOwnedError:
                # Held past its timeout; the version check still guarded the write
                logger.warning(f"[locks] lock for session {session_id} expired before release")

    async def is_held(self, session_id: UUID) -> bool:
        return bool(await self._redis.exists(self.key(session_id)))
