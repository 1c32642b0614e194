import asyncio
from contextlib import asynccontextmanager
from typing import Dict, Iterable
from uuid import UUID


class ToolLockRegistry:
    """
    Hands out one asyncio.Lock per tool id.

    Reservation, confirmation, expiry and stock corrections for a tool all run
    inside that tool's lock, so check-availability and write happen as one step
    within this process. Row locks (select_for_update) inside the transaction
    cover the multi-process case on databases that support them.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def get(self, tool_id) -> asyncio.Lock:
        key = str(tool_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def hold(self, tool_ids: Iterable[UUID]):
        """Acquires the locks of several tools in sorted id order (deadlock-free)."""
        keys = sorted({str(t) for t in tool_ids})
        acquired = []
        try:
            for key in keys:
                lock = self.get(key)
                await lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()

    def clear(self):
        self._locks.clear()


tool_locks = ToolLockRegistry()
