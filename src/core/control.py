"""
Run controls shared by the batch jobs.

``RunControl`` carries the deadline / cancellation signal checked between
units of work. ``KeyedLocks`` serializes work on identical keys while
letting disjoint keys proceed in parallel.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from typing import Dict, Hashable, Optional

import structlog

logger = structlog.get_logger(__name__)


class RunControl:
    """
    Cooperative cancellation for one job run.

    A run stops starting new units once ``cancel()`` is called or the
    deadline passes. Units already in flight finish or roll back on their
    own transaction boundary.
    """

    def __init__(self, deadline_seconds: Optional[float] = None):
        self._event = asyncio.Event()
        self._deadline = time.monotonic() + deadline_seconds if deadline_seconds else None
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()
            logger.warning("Run cancellation requested", reason=reason)

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self.cancel("deadline exceeded")
            return True
        return False


class KeyedLocks:
    """One asyncio.Lock per key, dropped when no holder or waiter remains"""

    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._refs: Dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable, timeout: Optional[float] = None):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._refs[key] = self._refs.get(key, 0) + 1
        try:
            if timeout is None:
                await lock.acquire()
            else:
                await asyncio.wait_for(lock.acquire(), timeout)
            try:
                yield
            finally:
                lock.release()
        finally:
            self._refs[key] -= 1
            if self._refs[key] == 0:
                del self._refs[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
