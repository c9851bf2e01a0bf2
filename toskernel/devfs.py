"""Device file system and the null device."""

from __future__ import annotations

import os
import stat
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .vfs import Vnode, VnodeType


class DevType(Enum):
    """Kind of device entry."""

    CHAR = 0
    DIR = 1


@dataclass(eq=False)
class DevfsEntry:
    """A registered device: its name, kind and the node carrying its operations."""

    name: str
    type: DevType
    ops: Vnode | None = None
    private_data: Any = None
    children: list["DevfsEntry"] = field(default_factory=list)


class NullDevice(Vnode):
    """Reads hit end of file at once; writes are accepted and discarded."""

    def __init__(self) -> None:
        super().__init__(VnodeType.CHARDEV, "null")

    def read(self, size: int, offset: int) -> bytes:
        return b""

    def write(self, data: bytes, offset: int) -> int:
        return len(data)


def _device_stat() -> os.stat_result:
    return os.stat_result((stat.S_IFCHR | 0o666, 0, 0, 0, 0, 0, 0, 0, 0, 0))


class _DeviceNode(Vnode):
    """Vnode handed out by a devfs lookup, forwarding to the entry's operations."""

    def __init__(self, entry: DevfsEntry) -> None:
        kind = VnodeType.DIR if entry.type is DevType.DIR else VnodeType.CHARDEV
        super().__init__(kind, entry.name, private_data=entry.private_data)
        self._ops = entry.ops

    def _target(self) -> Vnode:
        if self._ops is None:
            raise NotImplementedError
        return self._ops

    def read(self, size: int, offset: int) -> bytes:
        return self._target().read(size, offset)

    def write(self, data: bytes, offset: int) -> int:
        return self._target().write(data, offset)

    def open(self) -> None:
        if self._ops is not None:
            self._ops.open()

    def close(self) -> None:
        if self._ops is not None:
            self._ops.close()

    def lookup(self, name: str) -> Vnode | None:
        return self._target().lookup(name)

    def readdir(self, index: int) -> str | None:
        return self._target().readdir(index)

    def stat(self) -> os.stat_result:
        return self._target().stat()

    def truncate(self, length: int) -> None:
        self._target().truncate(length)


class _DevfsRoot(Vnode):
    def __init__(self, entries: list[DevfsEntry]) -> None:
        super().__init__(VnodeType.DIR, "")
        self._entries = entries

    def lookup(self, name: str) -> Vnode | None:
        for entry in self._entries:
            if entry.name == name:
                return _DeviceNode(entry)
        return None

    def stat(self) -> os.stat_result:
        return _device_stat()


class Devfs:
    """Flat directory of registered devices; the newest registration wins."""

    def __init__(self) -> None:
        self._entries: list[DevfsEntry] = []

    def register(self, entry: DevfsEntry) -> None:
        """Add ``entry`` in front of those already registered."""
        self._entries.insert(0, entry)

    def mount(self) -> Vnode:
        """Return the root directory vnode of the device tree."""
        return _DevfsRoot(self._entries)


def make_null_entry() -> DevfsEntry:
    """Entry for the ``null`` character device."""
    return DevfsEntry("null", DevType.CHAR, NullDevice())