"""Per-key mutual exclusion for repository mutation and task execution."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict


logger = logging.getLogger(__name__)


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


class KeyedMutex:
    """
    One asyncio.Lock per key, created on demand and dropped when unused.

    PATTERN: async with mutex.hold(repo_path): ...
    CRITICAL: Release happens on every exit path, including cancellation
    GOTCHA: Not reentrant, holding the same key twice in one task deadlocks
    """

    def __init__(self, name: str = "mutex"):
        self.name = name
        self._entries: Dict[str, _Entry] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """
        Hold the lock for key for the duration of the block.

        Args:
            key: Lock key, e.g. a repository path or task ID
        """
        entry = self._entries.get(key)
        if entry is None:
            entry = _Entry()
            self._entries[key] = entry
        entry.users += 1

        try:
            if entry.lock.locked():
                logger.debug(f"[{self.name}] waiting for {key}")
            await entry.lock.acquire()
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            entry.users -= 1
            if entry.users == 0 and self._entries.get(key) is entry:
                del self._entries[key]

    def is_locked(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.lock.locked()

    def __len__(self) -> int:
        return len(self._entries)
