"""Per-task asyncio locks for serializing worktree state transitions."""

import asyncio
import logging
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class TaskLock:
    """
    Reentrant asyncio lock owned by the asyncio task that acquired it.

    Reentrancy lets a holder (e.g. a sync pass) call status-transition APIs
    that take the same lock without deadlocking itself, while any other
    coroutine touching the same task id still waits its turn.
    """

    def __init__(self, key: str):
        self.key = key
        self._lock = asyncio.Lock()
        self._owner: Optional[asyncio.Task] = None
        self._depth = 0

    async def acquire(self) -> None:
        """Acquire the lock, or deepen the hold if the current task owns it."""
        current = asyncio.current_task()
        if current is not None and self._owner is current:
            self._depth += 1
            return

        await self._lock.acquire()
        self._owner = current
        self._depth = 1
        logger.debug(f"Acquired lock for {self.key}")

    def release(self) -> None:
        """Release one level of the hold."""
        if self._depth <= 0:
            raise RuntimeError(f"Lock for {self.key} released without being held")
        self._depth -= 1
        if self._depth == 0:
            self._owner = None
            self._lock.release()
            logger.debug(f"Released lock for {self.key}")

    def locked(self) -> bool:
        return self._lock.locked()

    async def __aenter__(self) -> "TaskLock":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.release()
        return False


class TaskLockRegistry:
    """Hands out one TaskLock per key; different keys never contend."""

    def __init__(self):
        self._locks: Dict[str, TaskLock] = {}

    def for_key(self, key: str) -> TaskLock:
        lock = self._locks.get(key)
        if lock is None:
            lock = TaskLock(key)
            self._locks[key] = lock
        return lock

    def discard(self, key: str) -> None:
        """Forget an idle lock once its task is gone."""
        lock = self._locks.get(key)
        if lock is not None and not lock.locked():
            del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
