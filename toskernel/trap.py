"""Trap frames saved on entry to the kernel, and system-call trap handling."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import Callable

NUM_REGS = 31
SYSCALL_NR_REG = 8
SYSCALL_ARGS = 6

TF_SP_EL0 = 31 * 8
TF_ELR_EL1 = 32 * 8
TF_SPSR_EL1 = 33 * 8
TF_ESR_EL1 = 34 * 8
TF_SIZE = 35 * 8

_LAYOUT = struct.Struct("<35Q")
_WORD_MASK = 2**64 - 1

Dispatch = Callable[[int, tuple[int, ...]], int]


@dataclass
class TrapFrame:
    """Registers saved when user code enters the kernel."""

    regs: list[int] = field(default_factory=lambda: [0] * NUM_REGS)
    sp_el0: int = 0
    elr_el1: int = 0
    spsr_el1: int = 0
    esr_el1: int = 0

    def __post_init__(self) -> None:
        self.regs = list(self.regs)
        if len(self.regs) != NUM_REGS:
            raise ValueError(f"a trap frame holds {NUM_REGS} general registers")

    def pack(self) -> bytes:
        """The frame in its saved in-memory layout."""
        return _LAYOUT.pack(*self.regs, self.sp_el0, self.elr_el1, self.spsr_el1, self.esr_el1)

    @classmethod
    def unpack(cls, data: bytes) -> "TrapFrame":
        """Read a frame from its saved in-memory layout."""
        data = bytes(data)
        if len(data) != TF_SIZE:
            raise ValueError(f"a trap frame is {TF_SIZE} bytes, got {len(data)}")
        values = _LAYOUT.unpack(data)
        return cls(list(values[:NUM_REGS]), *values[NUM_REGS:])


def handle_trap(frame: TrapFrame, dispatch: Dispatch) -> None:
    """Run the system call named by x8 with arguments x0-x5; the result goes to x0."""
    number = frame.regs[SYSCALL_NR_REG]
    args = tuple(frame.regs[:SYSCALL_ARGS])
    frame.regs[0] = int(dispatch(number, args)) & _WORD_MASK