"""Keyed asyncio locks for per-order serialization.

Operations on the same order must run their check-then-mutate sequence
atomically, while operations on different orders proceed in parallel.
KeyedLock hands out one asyncio.Lock per key and drops it again once no
task holds or waits on it, so idle orders cost nothing.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Hashable, List


class KeyedLock:
    """A family of asyncio locks indexed by key.

    Example:
        >>> locks = KeyedLock()
        >>> async with locks.hold(("order", 42)):
        ...     ...  # exclusive for order 42 only
    """

    def __init__(self) -> None:
        # key -> [lock, number of tasks holding or waiting]
        self._entries: Dict[Hashable, List] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        """Hold the lock for ``key`` for the duration of the block.

        The lock is released on every exit path, including cancellation
        while waiting for it.
        """
        entry = self._entries.get(key)
        if entry is None:
            entry = [asyncio.Lock(), 0]
            self._entries[key] = entry
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._entries[key]

    def locked(self, key: Hashable) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry[0].locked()

    def __len__(self) -> int:
        return len(self._entries)
