"""Per-table write serialization.

Schema edits rewrite a table's whole definition document, and the unique-value
scan runs before the write it guards. Both are read-modify-write sequences, so
each runs while holding the table's lock. Locks are process-local.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class TableLocks:
    """Registry of one asyncio.Lock per table id.

    A lock exists only while some task holds it or waits for it; the last
    task to leave removes it, so ids that are never seen again cost nothing.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, table_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(table_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[table_id] = lock
        self._users[table_id] = self._users.get(table_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[table_id] -= 1
            if not self._users[table_id]:
                del self._users[table_id]
                del self._locks[table_id]

    def is_held(self, table_id: str) -> bool:
        lock = self._locks.get(table_id)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
