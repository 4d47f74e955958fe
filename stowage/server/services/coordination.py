import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)


class UserLocks:
    """Per-user locks serializing structural mutations.

    Rename, move, delete and restore of one user's items run one at a time
    so that the name-uniqueness check and the write that follows it cannot
    interleave. Different users never wait on each other. A lock only lives
    while someone holds it or waits for it.
    """

    def __init__(self) -> None:
        self._locks: dict[int, asyncio.Lock] = {}
        self._users: dict[int, int] = {}

    @asynccontextmanager
    async def lock(self, user_id: int) -> AsyncIterator[None]:
        """Hold the lock of ``user_id`` for the duration of the block."""
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        self._users[user_id] = self._users.get(user_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[user_id] -= 1
            if not self._users[user_id]:
                del self._users[user_id]
                del self._locks[user_id]

    def locked(self, user_id: int) -> bool:
        return user_id in self._locks and self._locks[user_id].locked()

    def __len__(self) -> int:
        return len(self._locks)
