"""
Per-key mutual exclusion.

Work for one key (a student id) is serialized; work for different keys runs in
parallel. Locks are reference counted and dropped once nobody holds or waits
for them, so the table does not grow with the number of students seen.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List


class KeyedLock:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._waiters[key] = self._waiters.get(key, 0) + 1
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._waiters[key] -= 1
                if self._waiters[key] == 0:
                    del self._waiters[key]
                    del self._locks[key]

    def active_keys(self) -> List[str]:
        with self._guard:
            return list(self._locks)


__all__ = ["KeyedLock"]
