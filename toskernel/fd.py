"""File-descriptor table mapping small integers to kernel objects."""

from __future__ import annotations

import errno
import os
from enum import IntEnum
from typing import Any

MAX_FDS = 64


class FdType(IntEnum):
    """Kind of object a descriptor refers to."""

    NONE = 0
    SOCKET = 1


class FdTable:
    """Fixed-size table of descriptors; the lowest free slot is used first."""

    def __init__(self, size: int = MAX_FDS) -> None:
        self._entries: list[tuple[FdType, Any] | None] = [None] * size

    def reset(self) -> None:
        """Clear every descriptor."""
        self._entries = [None] * len(self._entries)

    def alloc(self, fd_type: FdType, obj: Any) -> int:
        """Bind ``obj`` to the lowest free descriptor and return it."""
        for fd, entry in enumerate(self._entries):
            if entry is None:
                self._entries[fd] = (FdType(fd_type), obj)
                return fd
        raise OSError(errno.EMFILE, os.strerror(errno.EMFILE))

    def get(self, fd: int, fd_type: FdType) -> Any | None:
        """Return the object behind ``fd`` if it is in use with that type."""
        if not 0 <= fd < len(self._entries):
            return None
        entry = self._entries[fd]
        if entry is None or entry[0] != fd_type:
            return None
        return entry[1]

    def close(self, fd: int) -> None:
        """Free ``fd``; descriptors out of range are ignored."""
        if 0 <= fd < len(self._entries):
            self._entries[fd] = None