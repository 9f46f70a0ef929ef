"""Key-scoped locks for per-sender state."""

import threading
from contextlib import contextmanager
from typing import Iterator


class KeyedLocks:
    """
    One lock per key, created on first use.

    Holders of different keys never contend. Critical sections never
    await, so plain threading locks are enough and callers such as the
    synchronous admit()/is_loop() checks need no event loop.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        """Hold the lock for a key."""
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
        with lock:
            yield

    def discard(self, key: str) -> bool:
        """
        Forget the lock for an evicted key, unless it is currently held.

        Returns:
            True if the lock was removed.
        """
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                return True
            if not lock.acquire(blocking=False):
                return False
            del self._locks[key]
            lock.release()
            return True

    def __len__(self) -> int:
        return len(self._locks)
