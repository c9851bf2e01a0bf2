"""Process records, the process table and the per-CPU current process."""

from __future__ import annotations

import errno
import os
from dataclasses import dataclass, field
from enum import Enum

from .vfs import OpenFile, Vfs

MAX_FD = 128
MAX_PROC_NAME = 32
MAX_PROCESSES = 256
MAX_CPUS = 4


class ProcessState(Enum):
    """Life-cycle state of a process."""

    RUNNING = 0
    SLEEPING = 1
    WAITING = 2
    ZOMBIE = 3
    EXITED = 4


@dataclass(eq=False)
class Process:
    """A process: identity, open files, heap bounds and exit status."""

    pid: int
    ppid: int = 0
    name: str = ""
    state: ProcessState = ProcessState.RUNNING
    fd_table: list[OpenFile | None] = field(default_factory=lambda: [None] * MAX_FD)
    heap_start: int = 0
    heap_end: int = 0
    exit_code: int = 0
    exited: bool = False
    uid: int = 0
    gid: int = 0

    def __post_init__(self) -> None:
        if len(self.name) >= MAX_PROC_NAME:
            raise ValueError(f"process name longer than {MAX_PROC_NAME - 1} characters")


class ProcessTable:
    """Processes indexed by pid; pids are handed out in increasing order from 1."""

    def __init__(self, max_processes: int = MAX_PROCESSES) -> None:
        self._slots: list[Process | None] = [None] * max_processes
        self._next_pid = 1

    def create(self, ppid: int) -> Process:
        """Create a process whose parent is ``ppid`` and enter it in the table."""
        pid = self._next_pid
        if pid >= len(self._slots):
            raise OSError(errno.EAGAIN, os.strerror(errno.EAGAIN))
        self._next_pid += 1
        proc = Process(pid=pid, ppid=ppid)
        self._slots[pid] = proc
        return proc

    def destroy(self, proc: Process | None, vfs: Vfs) -> None:
        """Close the process's open files and remove it from the table."""
        if proc is None:
            return
        for fd, file in enumerate(proc.fd_table):
            if file is not None:
                vfs.close(file)
                proc.fd_table[fd] = None
        if 0 <= proc.pid < len(self._slots) and self._slots[proc.pid] is proc:
            self._slots[proc.pid] = None

    def lookup(self, pid: int) -> Process | None:
        """The process with ``pid``, or None."""
        if not 0 <= pid < len(self._slots):
            return None
        return self._slots[pid]


class CurrentProcess:
    """The process running on each CPU."""

    def __init__(self, cpu_count: int = MAX_CPUS) -> None:
        self._running: list[Process | None] = [None] * cpu_count

    def _check(self, cpu: int) -> None:
        if not 0 <= cpu < len(self._running):
            raise ValueError(f"no such CPU: {cpu}")

    def get(self, cpu: int) -> Process | None:
        """The process running on ``cpu``."""
        self._check(cpu)
        return self._running[cpu]

    def set(self, cpu: int, proc: Process | None) -> None:
        """Record ``proc`` as running on ``cpu``."""
        self._check(cpu)
        self._running[cpu] = proc