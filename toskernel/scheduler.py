"""Per-CPU priority run queues with real-time and time-sharing classes."""

from __future__ import annotations

import bisect
import itertools
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Sequence

MAX_CPUS = 4
PRIORITY_LEVELS = 32


class SchedClass(Enum):
    """Scheduling class of a thread."""

    TS = 0
    RT = 1
    SYS = 2


class ThreadState(Enum):
    """Life-cycle state of a thread."""

    NEW = 0
    RUNNING = 1
    WAITING = 2
    SLEEPING = 3
    ZOMBIE = 4


@dataclass(eq=False)
class Thread:
    """A schedulable thread."""

    tid: int = 0
    pid: int = 0
    state: ThreadState = ThreadState.NEW
    sched_class: SchedClass = SchedClass.TS
    priority: int = 0
    base_quantum: int = 1
    quantum: int = 1
    assigned_cpu: int = 0
    entry: Optional[Callable[[Any], Any]] = None
    arg: Any = None
    retval: Any = None
    detached: bool = False


# System threads share the time-sharing run queues.
_QUEUE_OF = {
    SchedClass.TS: SchedClass.TS,
    SchedClass.RT: SchedClass.RT,
    SchedClass.SYS: SchedClass.TS,
}
_PICK_ORDER = (SchedClass.RT, SchedClass.TS)

ContextSwitch = Callable[[Optional[Thread], Optional[Thread]], Any]


class Scheduler:
    """Chooses which thread runs on each CPU.

    ``clock`` returns the current time in the units used for sleeping;
    ``context_switch(prev, next)``, when given, is called whenever a CPU
    changes thread. ``current`` holds the thread running on each CPU.
    """

    def __init__(
        self,
        cpu_count: int = MAX_CPUS,
        clock: Callable[[], int] = lambda: 0,
        context_switch: Optional[ContextSwitch] = None,
        idle_threads: Optional[Sequence[Optional[Thread]]] = None,
    ) -> None:
        if cpu_count <= 0:
            raise ValueError("cpu_count must be positive")
        self.cpu_count = cpu_count
        self.clock = clock
        self.context_switch = context_switch
        self.current: list[Optional[Thread]] = [None] * cpu_count
        idle = list(idle_threads) if idle_threads is not None else []
        if len(idle) > cpu_count:
            raise ValueError("more idle threads than CPUs")
        self.idle_threads: list[Optional[Thread]] = idle + [None] * (cpu_count - len(idle))
        self._runqueues = [
            {cls: [deque() for _ in range(PRIORITY_LEVELS)] for cls in _PICK_ORDER}
            for _ in range(cpu_count)
        ]
        self._sleepers: list[list[tuple[int, int, Thread]]] = [[] for _ in range(cpu_count)]
        self._seq = itertools.count()

    def _switch(self, prev: Optional[Thread], nxt: Optional[Thread]) -> None:
        if self.context_switch is not None:
            self.context_switch(prev, nxt)

    def _check_cpu(self, cpu: int) -> None:
        if not 0 <= cpu < self.cpu_count:
            raise ValueError(f"no such CPU: {cpu}")

    def enqueue(self, cpu: int, thread: Thread) -> None:
        """Make ``thread`` runnable on ``cpu`` with a fresh time slice."""
        self._check_cpu(cpu)
        if not 0 <= thread.priority < PRIORITY_LEVELS:
            raise ValueError(f"priority out of range: {thread.priority}")
        thread.quantum = thread.base_quantum
        queue = self._runqueues[cpu][_QUEUE_OF[thread.sched_class]][thread.priority]
        queue.append(thread)

    def _peek(self, cpu: int) -> Optional[tuple[Thread, deque]]:
        for cls in _PICK_ORDER:
            for queue in reversed(self._runqueues[cpu][cls]):
                if queue:
                    return queue[0], queue
        return None

    def pick_next(self, cpu: int) -> Optional[Thread]:
        """Take the next thread to run: real-time first, highest priority first.

        Falls back to the CPU's idle thread when nothing is runnable.
        """
        self._check_cpu(cpu)
        found = self._peek(cpu)
        if found is None:
            return self.idle_threads[cpu]
        thread, queue = found
        queue.popleft()
        return thread

    @staticmethod
    def _should_preempt(curr: Thread, nxt: Thread) -> bool:
        if nxt.sched_class is SchedClass.RT:
            return True
        return nxt.priority > curr.priority

    def tick(self, cpu: int) -> None:
        """Handle one system tick: wake sleepers, charge the slice, preempt."""
        self.timer_tick(cpu)

        curr = self.current[cpu]
        if curr is not None and curr.sched_class is SchedClass.TS:
            curr.quantum -= 1
            if curr.quantum <= 0:
                self.enqueue(cpu, curr)
                nxt = self.pick_next(cpu)
                self.current[cpu] = nxt
                if nxt is not curr:
                    self._switch(curr, nxt)
                curr = nxt

        found = self._peek(cpu)
        queue: Optional[deque] = None
        if found is None:
            candidate = self.idle_threads[cpu]
        else:
            candidate, queue = found
        if candidate is None or candidate is curr:
            return
        if curr is None or self._should_preempt(curr, candidate):
            if queue is not None:
                queue.popleft()
            self.current[cpu] = candidate
            self._switch(curr, candidate)

    def timer_tick(self, cpu: int) -> None:
        """Make every thread whose wake-up time has passed runnable again."""
        self._check_cpu(cpu)
        now = self.clock()
        sleepers = self._sleepers[cpu]
        while sleepers and sleepers[0][0] <= now:
            _wake, _seq, thread = sleepers.pop(0)
            thread.state = ThreadState.RUNNING
            self.enqueue(cpu, thread)

    def sleep(self, cpu: int, thread: Thread, wake_time: int) -> None:
        """Put ``thread`` to sleep on ``cpu`` until ``wake_time``."""
        self._check_cpu(cpu)
        bisect.insort(self._sleepers[cpu], (wake_time, next(self._seq), thread))
        thread.state = ThreadState.SLEEPING