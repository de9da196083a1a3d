"""
Per-key mutual exclusion.

Rebuilds of the same ticket and aggregations of the same bucket must not
interleave; different keys proceed in parallel. Entries are dropped once no
thread holds or waits for them.
"""

import threading
from contextlib import contextmanager
from typing import Hashable, Iterator


class KeyedLock:
    """A lazily created threading.Lock per key, reference counted."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[Hashable, list] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        lock = entry[0]
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
