"""Bounded in-kernel byte pipe."""

from __future__ import annotations

from .spinlock import SpinLock

PIPE_BUF_SIZE = 4096


class Pipe:
    """FIFO byte buffer holding at most ``PIPE_BUF_SIZE`` bytes.

    Reads and writes never block: they move as many bytes as are
    available or as fit.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._lock = SpinLock()

    def read(self, size: int) -> bytes:
        """Take up to ``size`` bytes from the front of the pipe."""
        if size < 0:
            raise ValueError("size must not be negative")
        with self._lock:
            chunk = bytes(self._buffer[:size])
            del self._buffer[:size]
            return chunk

    def write(self, data: bytes) -> int:
        """Append as much of ``data`` as fits; return the number of bytes taken."""
        with self._lock:
            room = PIPE_BUF_SIZE - len(self._buffer)
            accepted = bytes(data)[:room]
            self._buffer += accepted
            return len(accepted)

    def __len__(self) -> int:
        return len(self._buffer)