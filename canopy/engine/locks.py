"""
canopy.engine.locks — Per-key lock registry
============================================

Serialises read-modify-write cycles on one ``(user_id, template_id)``
key while letting different keys run in parallel.  Locks are created on
demand and dropped once no caller holds or waits on them.
"""

from __future__ import annotations

from collections.abc import Hashable, Iterator
from contextlib import contextmanager
from threading import Lock


class KeyedLocks:
    """Thread-safe registry of reference-counted locks.

    Usage::

        locks = KeyedLocks()
        with locks.hold(("user-1", "daily-trees")):
            ...  # exclusive for this key only
    """

    def __init__(self) -> None:
        self._guard = Lock()
        # key → [lock, number of holders + waiters]
        self._locks: dict[Hashable, list] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [Lock(), 0]
            entry[1] += 1
        lock: Lock = entry[0]
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
