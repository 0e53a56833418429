"""
Per-session application locks.

Completions for the same (player, route) run one at a time; different keys
never share a lock. Entries are reference counted and dropped as soon as the
last holder releases, so the registry only ever holds keys with work in flight.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator, List


class SessionLocks:
    """Registry of locks keyed by (player_id, route_id)."""

    def __init__(self):
        self._mutex = threading.Lock()
        # key -> [lock, holders+waiters]
        self._locks: Dict[Hashable, List] = {}

    def _acquire_entry(self, key: Hashable) -> threading.Lock:
        with self._mutex:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[key] = entry
            entry[1] += 1
            return entry[0]

    def _release_entry(self, key: Hashable) -> None:
        with self._mutex:
            entry = self._locks.get(key)
            if entry is None:
                return
            entry[1] -= 1
            if entry[1] <= 0:
                del self._locks[key]

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        lock = self._acquire_entry(key)
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            self._release_entry(key)

    def __len__(self) -> int:
        with self._mutex:
            return len(self._locks)


_session_locks = SessionLocks()


def get_session_locks() -> SessionLocks:
    return _session_locks
