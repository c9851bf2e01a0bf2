"""Virtual file system: path resolution and file operations over vnodes."""

from __future__ import annotations

import errno
import os
import posixpath
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Callable, NoReturn

from .spinlock import SpinLock


class VnodeType(Enum):
    """Kind of object a vnode stands for."""

    FILE = 0
    DIR = 1
    CHARDEV = 2
    BLOCKDEV = 3
    SYMLINK = 4
    PIPE = 5


class Whence(IntEnum):
    """Reference point for a seek."""

    SET = os.SEEK_SET
    CUR = os.SEEK_CUR


class Vnode:
    """A node in the file tree.

    File systems subclass this and override the operations they support;
    an operation left alone raises NotImplementedError, except ``open`` and
    ``close``, which do nothing. Directories that allow changes define
    ``create(name, type)``, ``unlink(name)``, ``mkdir(name)`` and
    ``rmdir(name)``; a node without one of these does not support it.
    """

    def __init__(
        self,
        type: VnodeType = VnodeType.FILE,
        name: str = "",
        parent: "Vnode | None" = None,
        private_data: Any = None,
    ) -> None:
        self.type = type
        self.name = name
        self.parent = parent
        self.private_data = private_data

    def read(self, size: int, offset: int) -> bytes:
        raise NotImplementedError

    def write(self, data: bytes, offset: int) -> int:
        raise NotImplementedError

    def open(self) -> None:
        pass

    def close(self) -> None:
        pass

    def lookup(self, name: str) -> "Vnode | None":
        raise NotImplementedError

    def readdir(self, index: int) -> str | None:
        raise NotImplementedError

    def stat(self) -> os.stat_result:
        raise NotImplementedError

    def truncate(self, length: int) -> None:
        raise NotImplementedError


@dataclass(eq=False)
class OpenFile:
    """An open file: the vnode and the current position."""

    node: Vnode | None
    offset: int = 0
    flags: int = 0
    refcount: int = 1
    lock: SpinLock = field(default_factory=SpinLock, repr=False)


def _fail(code: int, path: str | None = None) -> NoReturn:
    if path is None:
        raise OSError(code, os.strerror(code))
    raise OSError(code, os.strerror(code), path)


def _split_parent(path: str) -> tuple[str, str]:
    parent, slash, name = path.rpartition("/")
    if not slash:
        _fail(errno.EINVAL, path)
    return parent, name


def _operation(node: Vnode, name: str) -> Callable[..., Any] | None:
    operation = getattr(node, name, None)
    return operation if callable(operation) else None


class Vfs:
    """The mounted file tree and the operations on it."""

    def __init__(self) -> None:
        self._root: Vnode | None = None

    def mount_root(self, root: Vnode) -> None:
        """Make ``root`` the top of the tree."""
        self._root = root

    def resolve(self, path: str) -> Vnode | None:
        """Walk ``path`` from the root; None if any component is missing."""
        if self._root is None or not path:
            return None
        current: Vnode | None = self._root
        for component in (part for part in path.split("/") if part):
            if current is None:
                break
            try:
                current = current.lookup(component)
            except NotImplementedError:
                return None
        return current

    def open(self, path: str, flags: int = 0) -> OpenFile:
        """Open ``path``; with ``O_CREAT`` a missing file is created first."""
        node = self.resolve(path)
        if node is None and flags & os.O_CREAT:
            parent = self.resolve(posixpath.dirname(path) or ".")
            if parent is None:
                _fail(errno.ENOENT, path)
            create = _operation(parent, "create")
            if create is None:
                _fail(errno.ENOENT, path)
            name = path.rpartition("/")[2]
            try:
                create(name, VnodeType.FILE)
                node = parent.lookup(name)
            except NotImplementedError:
                _fail(errno.ENOENT, path)
            if node is None:
                _fail(errno.EIO, path)
        if node is None:
            _fail(errno.ENOENT, path)
        node.open()
        return OpenFile(node, 0, flags, 1)

    def close(self, file: OpenFile | None) -> None:
        """Close an open file."""
        if file is None:
            _fail(errno.EINVAL)
        if file.node is not None:
            file.node.close()

    def read(self, file: OpenFile | None, size: int) -> bytes:
        """Read up to ``size`` bytes at the file position and advance it."""
        if file is None or file.node is None:
            _fail(errno.EINVAL)
        try:
            data = file.node.read(size, file.offset)
        except NotImplementedError:
            _fail(errno.EINVAL)
        file.offset += len(data)
        return data

    def write(self, file: OpenFile | None, data: bytes) -> int:
        """Write ``data`` at the file position and advance it."""
        if file is None or file.node is None:
            _fail(errno.EINVAL)
        try:
            written = file.node.write(bytes(data), file.offset)
        except NotImplementedError:
            _fail(errno.EINVAL)
        if written > 0:
            file.offset += written
        return written

    def lseek(self, file: OpenFile | None, offset: int, whence: int) -> int:
        """Move the file position; only SEEK_SET and SEEK_CUR are accepted."""
        if file is None:
            _fail(errno.EINVAL)
        try:
            whence = Whence(whence)
        except ValueError:
            _fail(errno.EINVAL)
        if whence is Whence.SET:
            file.offset = offset
        else:
            file.offset += offset
        return file.offset

    def stat(self, path: str) -> os.stat_result:
        """Status of the node at ``path``."""
        node = self.resolve(path)
        if node is None:
            _fail(errno.ENOENT, path)
        try:
            return node.stat()
        except NotImplementedError:
            _fail(errno.ENOENT, path)

    def fstat(self, file: OpenFile | None) -> os.stat_result:
        """Status of an open file's node."""
        if file is None or file.node is None:
            _fail(errno.EINVAL)
        try:
            return file.node.stat()
        except NotImplementedError:
            _fail(errno.EINVAL)

    def readdir(self, directory: OpenFile | None, index: int) -> str | None:
        """Name of entry ``index`` in an open directory."""
        if directory is None or directory.node is None:
            _fail(errno.EINVAL)
        try:
            return directory.node.readdir(index)
        except NotImplementedError:
            _fail(errno.EINVAL)

    def _parent_operation(self, path: str, operation: str) -> None:
        parent_path, name = _split_parent(path)
        parent = self.resolve(parent_path)
        if parent is None:
            _fail(errno.ENOTDIR, path)
        method = _operation(parent, operation)
        if method is None:
            _fail(errno.ENOTDIR, path)
        try:
            method(name)
        except NotImplementedError:
            _fail(errno.ENOTDIR, path)

    def mkdir(self, path: str) -> None:
        """Create a directory."""
        self._parent_operation(path, "mkdir")

    def unlink(self, path: str) -> None:
        """Remove a file."""
        self._parent_operation(path, "unlink")

    def rmdir(self, path: str) -> None:
        """Remove a directory."""
        self._parent_operation(path, "rmdir")

    def truncate(self, path: str, length: int) -> None:
        """Set the length of the file at ``path``."""
        node = self.resolve(path)
        if node is None:
            _fail(errno.EINVAL, path)
        try:
            node.truncate(length)
        except NotImplementedError:
            _fail(errno.EINVAL, path)