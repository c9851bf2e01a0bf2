"""Thread life cycle on top of the scheduler."""

from __future__ import annotations

import itertools
from typing import Any, Callable, Optional

from .scheduler import SchedClass, Scheduler, Thread, ThreadState

DEFAULT_PRIORITY = 10
DEFAULT_QUANTUM = 5


class ThreadManager:
    """Creates, tracks and switches threads.

    ``cpu_id`` is called with no arguments and returns the CPU the caller
    runs on.
    """

    def __init__(self, scheduler: Scheduler, cpu_id: Callable[[], int] = lambda: 0) -> None:
        self.scheduler = scheduler
        self._cpu_id = cpu_id
        self._threads: dict[int, Thread] = {}
        self._tids = itertools.count(1)

    def create(self, pid: int, entry: Optional[Callable[[Any], Any]], arg: Any = None) -> int:
        """Create a time-sharing thread in process ``pid``, queue it and return its id."""
        thread = Thread(
            tid=next(self._tids),
            pid=pid,
            state=ThreadState.WAITING,
            sched_class=SchedClass.TS,
            priority=DEFAULT_PRIORITY,
            base_quantum=DEFAULT_QUANTUM,
            quantum=DEFAULT_QUANTUM,
            assigned_cpu=0,
            entry=entry,
            arg=arg,
        )
        self._threads[thread.tid] = thread
        self.scheduler.enqueue(thread.assigned_cpu, thread)
        return thread.tid

    def destroy(self, thread: Optional[Thread]) -> None:
        """Forget ``thread``."""
        if thread is None:
            return
        self._threads.pop(thread.tid, None)

    def lookup(self, tid: int) -> Optional[Thread]:
        """The thread with id ``tid``, or None."""
        return self._threads.get(tid)

    def _running(self) -> tuple[int, Thread]:
        cpu = self._cpu_id()
        curr = self.scheduler.current[cpu]
        if curr is None:
            raise RuntimeError(f"no thread running on CPU {cpu}")
        return cpu, curr

    def _switch_away(self, cpu: int, curr: Thread) -> None:
        nxt = self.scheduler.pick_next(cpu)
        self.scheduler.current[cpu] = nxt
        self.scheduler.context_switch(curr, nxt)

    def yield_(self) -> None:
        """Give up the CPU, going back to the end of the run queue."""
        cpu, curr = self._running()
        self.scheduler.enqueue(cpu, curr)
        self._switch_away(cpu, curr)

    def sleep(self, ms: int) -> None:
        """Sleep for ``ms`` clock units."""
        cpu, curr = self._running()
        self.scheduler.sleep(cpu, curr, self.scheduler.clock() + ms)
        self._switch_away(cpu, curr)

    def block(self, reason: ThreadState) -> None:
        """Stop running with state ``reason`` until unblocked."""
        cpu, curr = self._running()
        curr.state = reason
        self._switch_away(cpu, curr)

    def unblock(self, thread: Optional[Thread]) -> None:
        """Make a blocked thread runnable on its assigned CPU."""
        if thread is None:
            raise ValueError("no thread to unblock")
        thread.state = ThreadState.RUNNING
        self.scheduler.enqueue(thread.assigned_cpu, thread)

    def join(self, tid: int) -> Any:
        """Wait for thread ``tid`` to exit, release it and return its result."""
        target = self.lookup(tid)
        if target is None:
            raise LookupError(f"no thread {tid}")
        while target.state is not ThreadState.ZOMBIE:
            self.block(ThreadState.WAITING)
        retval = target.retval
        self.destroy(target)
        return retval

    def detach(self, tid: int) -> None:
        """Let thread ``tid`` be released as soon as it exits."""
        thread = self.lookup(tid)
        if thread is None:
            raise LookupError(f"no thread {tid}")
        thread.detached = True

    def exit(self, retval: Any = None) -> None:
        """End the running thread with result ``retval``."""
        cpu, curr = self._running()
        curr.retval = retval
        curr.state = ThreadState.ZOMBIE
        if curr.detached:
            self.destroy(curr)
        self._switch_away(cpu, curr)