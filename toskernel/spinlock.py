"""Mutual-exclusion lock used to guard short kernel critical sections."""

from __future__ import annotations

import threading


class SpinLock:
    """A lock that blocks until free, with a non-blocking attempt.

    Releasing a lock that is not held is harmless: it simply leaves the
    lock free.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def acquire(self) -> None:
        """Wait until the lock is free, then take it."""
        self._lock.acquire()

    def release(self) -> None:
        """Free the lock."""
        try:
            self._lock.release()
        except RuntimeError:
            pass

    def try_acquire(self) -> bool:
        """Take the lock if it is free; report whether it was taken."""
        return self._lock.acquire(blocking=False)

    def __enter__(self) -> "SpinLock":
        self.acquire()
        return self

    def __exit__(self, *args) -> None:
        self.release()