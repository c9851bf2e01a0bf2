"""File-related system calls on the current process's descriptor table."""

from __future__ import annotations

import errno
import os
from typing import Callable, NoReturn

from .pipe import Pipe
from .process import Process
from .vfs import OpenFile, Vfs, Vnode, VnodeType


def _fail(code: int) -> NoReturn:
    raise OSError(code, os.strerror(code))


class _PipeEnd(Vnode):
    """One end of a pipe: readable or writable, never both."""

    def __init__(self, pipe: Pipe, readable: bool) -> None:
        super().__init__(VnodeType.PIPE, private_data=pipe)
        self._pipe = pipe
        self._readable = readable

    def read(self, size: int, offset: int) -> bytes:
        if not self._readable:
            raise NotImplementedError
        return self._pipe.read(size)

    def write(self, data: bytes, offset: int) -> int:
        if self._readable:
            raise NotImplementedError
        return self._pipe.write(data)


class FileSyscalls:
    """System calls acting on files.

    ``current_process`` is called with no arguments and returns the process
    whose descriptor table the calls work on.
    """

    def __init__(self, vfs: Vfs, current_process: Callable[[], Process]) -> None:
        self._vfs = vfs
        self._current = current_process

    def _table(self) -> list[OpenFile | None]:
        return self._current().fd_table

    def _file(self, fd: int) -> OpenFile:
        table = self._table()
        if not 0 <= fd < len(table):
            _fail(errno.EBADF)
        file = table[fd]
        if file is None:
            _fail(errno.EBADF)
        return file

    def _install(self, file: OpenFile) -> int | None:
        table = self._table()
        for fd, entry in enumerate(table):
            if entry is None:
                table[fd] = file
                return fd
        return None

    def open(self, path: str, flags: int = 0) -> int:
        """Open ``path`` and return the lowest free descriptor."""
        file = self._vfs.open(path, flags)
        file.refcount = 1
        fd = self._install(file)
        if fd is None:
            self._vfs.close(file)
            _fail(errno.EMFILE)
        return fd

    def close(self, fd: int) -> None:
        """Release ``fd``; the file is closed when its last descriptor goes."""
        file = self._file(fd)
        with file.lock:
            file.refcount -= 1
            last = file.refcount == 0
        self._table()[fd] = None
        if last:
            self._vfs.close(file)

    def read(self, fd: int, size: int) -> bytes:
        """Read up to ``size`` bytes from ``fd``."""
        file = self._file(fd)
        with file.lock:
            return self._vfs.read(file, size)

    def write(self, fd: int, data: bytes) -> int:
        """Write ``data`` to ``fd``; return the number of bytes written."""
        file = self._file(fd)
        with file.lock:
            return self._vfs.write(file, data)

    def lseek(self, fd: int, offset: int, whence: int) -> int:
        """Move the position of ``fd`` and return the new position."""
        file = self._file(fd)
        with file.lock:
            return self._vfs.lseek(file, offset, whence)

    def stat(self, path: str) -> os.stat_result:
        """Status of ``path``."""
        return self._vfs.stat(path)

    def fstat(self, fd: int) -> os.stat_result:
        """Status of the file open on ``fd``."""
        file = self._file(fd)
        with file.lock:
            return self._vfs.fstat(file)

    def mkdir(self, path: str) -> None:
        """Create a directory."""
        self._vfs.mkdir(path)

    def unlink(self, path: str) -> None:
        """Remove a file."""
        self._vfs.unlink(path)

    def rmdir(self, path: str) -> None:
        """Remove a directory."""
        self._vfs.rmdir(path)

    def truncate(self, path: str, length: int) -> None:
        """Set the length of ``path``."""
        self._vfs.truncate(path, length)

    def dup(self, oldfd: int) -> int:
        """Share the file on ``oldfd`` through the lowest free descriptor."""
        file = self._file(oldfd)
        with file.lock:
            file.refcount += 1
        fd = self._install(file)
        if fd is None:
            with file.lock:
                file.refcount -= 1
            _fail(errno.EMFILE)
        return fd

    def dup2(self, oldfd: int, newfd: int) -> int:
        """Make ``newfd`` refer to the file on ``oldfd``, closing it first if open."""
        table = self._table()
        if not (0 <= oldfd < len(table) and 0 <= newfd < len(table)):
            _fail(errno.EBADF)
        file = self._file(oldfd)
        if oldfd == newfd:
            return newfd
        if table[newfd] is not None:
            self.close(newfd)
        with file.lock:
            file.refcount += 1
        table[newfd] = file
        return newfd

    def pipe(self) -> tuple[int, int]:
        """Create a pipe; return its read and write descriptors, which are adjacent."""
        pipe = Pipe()
        read_file = OpenFile(_PipeEnd(pipe, readable=True))
        write_file = OpenFile(_PipeEnd(pipe, readable=False))
        table = self._table()
        for fd in range(len(table) - 1):
            if table[fd] is None and table[fd + 1] is None:
                table[fd] = read_file
                table[fd + 1] = write_file
                return fd, fd + 1
        _fail(errno.EMFILE)