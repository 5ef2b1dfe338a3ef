"""Per-session serialization through reentrant asyncio locks."""

from __future__ import annotations

import asyncio
import contextvars
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

# Sessions whose lock the current execution context already holds. Child
# tasks from asyncio.gather() inherit the parent's set and can re-enter.
_held_sessions: contextvars.ContextVar[frozenset[str]] = contextvars.ContextVar(
    "_session_locks_held", default=frozenset()
)


class SessionLockManager(ABC):
    """Abstract base for the exclusive execution context of a session.

    Every mutation of a session's registry, delivery queues and version
    tokens runs inside ``locked(session_id)``. Implementations must be
    reentrant within one execution context: a join that broadcasts a
    presence event acquires the same session lock twice.
    """

    @abstractmethod
    @asynccontextmanager
    async def locked(self, session_id: str) -> AsyncIterator[None]:
        """Acquire the exclusive lock for *session_id*."""
        yield  # pragma: no cover

    @abstractmethod
    def release(self, session_id: str) -> bool:
        """Forget the lock of a torn-down session.

        Returns:
            True if a lock was dropped.
        """


class InMemorySessionLockManager(SessionLockManager):
    """In-process per-session asyncio locks.

    Locks are created on first use and dropped by ``release`` when the
    reaper tears a session down, so the table never outgrows the set of
    live sessions. A lock that is held or awaited is never dropped.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    def _get_lock(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        self._waiters[session_id] = self._waiters.get(session_id, 0) + 1
        return lock

    def _release_ref(self, session_id: str) -> None:
        count = self._waiters.get(session_id, 0) - 1
        if count <= 0:
            self._waiters.pop(session_id, None)
        else:
            self._waiters[session_id] = count

    @asynccontextmanager
    async def locked(self, session_id: str) -> AsyncIterator[None]:
        """Acquire the lock for a session (reentrant via ContextVar)."""
        held = _held_sessions.get()
        if session_id in held:
            yield
            return

        lock = self._get_lock(session_id)
        try:
            async with lock:
                token = _held_sessions.set(held | frozenset({session_id}))
                try:
                    yield
                finally:
                    _held_sessions.reset(token)
        finally:
            self._release_ref(session_id)

    def release(self, session_id: str) -> bool:
        lock = self._locks.get(session_id)
        if lock is None:
            return False
        # The caller may itself hold the lock (the reaper does); anyone else
        # holding or waiting keeps it alive.
        if self._waiters.get(session_id, 0) > (1 if lock.locked() else 0):
            return False
        del self._locks[session_id]
        return True

    @property
    def size(self) -> int:
        """Return the number of locks currently tracked."""
        return len(self._locks)
