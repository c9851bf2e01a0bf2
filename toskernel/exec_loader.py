"""Loading 64-bit ELF executables into a user address space."""

from __future__ import annotations

import errno
import os
import struct
from dataclasses import dataclass
from typing import NoReturn, Sequence

from .mmu import PAGE_MASK, PAGE_SIZE, PTE_USER, PTE_VALID, PTE_WRITE, PageTable
from .pmm import PhysicalMemoryManager

ELFMAG = b"\x7fELF"
EI_CLASS = 4
ELFCLASS64 = 2
ET_EXEC = 2
ET_DYN = 3
PT_LOAD = 1

USER_SPACE_TOP = 0x00007FFFFFFFFFFF
USER_MIN_ADDR = 0x1000
STACK_BASE = 0x7FFFFFF000
STACK_SIZE = 0x10000

_UINTPTR_MAX = 2**64 - 1
_PTR_SIZE = 8
_INT_SIZE = 4
_USER_PAGE = PTE_VALID | PTE_USER | PTE_WRITE

_EHDR = struct.Struct("<16sHHIQQQIHHHHHH")
_PHDR = struct.Struct("<IIQQQQQQ")


class ExecError(OSError):
    """An executable could not be loaded; ``errno`` says why."""


def _fail(code: int) -> NoReturn:
    raise ExecError(code, os.strerror(code))


@dataclass
class ProcessImage:
    """Where a freshly loaded program lives in its address space."""

    entry_point: int = 0
    stack_top: int = 0
    heap_base: int = 0
    heap_end: int = 0
    user_base: int = 0
    user_top: int = 0
    argc: int = 0
    argv: int = 0
    envp: int = 0


def _c_string(value: str | bytes) -> bytes:
    raw = value.encode() if isinstance(value, str) else bytes(value)
    if b"\0" in raw:
        raise ValueError("argument or environment string contains a NUL byte")
    return raw + b"\0"


class ElfLoader:
    """Maps ELF segments and an argument stack into ``page_table``.

    Physical pages come from ``pmm``; their contents are kept in ``memory``,
    keyed by page-aligned physical address.
    """

    def __init__(self, page_table: PageTable, pmm: PhysicalMemoryManager) -> None:
        self.page_table = page_table
        self.pmm = pmm
        self.memory: dict[int, bytearray] = {}

    def _map_fresh_page(self, va: int) -> None:
        try:
            phys = self.pmm.alloc_page()
        except MemoryError:
            _fail(errno.ENOMEM)
        self.memory[phys & PAGE_MASK] = bytearray(PAGE_SIZE)
        self.page_table.map(va, phys, _USER_PAGE)

    def _is_user_mapped(self, dst: int, length: int) -> bool:
        for page in range(dst & PAGE_MASK, dst + length, PAGE_SIZE):
            pte = self.page_table.walk(page)
            if pte is None or not pte & PTE_VALID or not pte & PTE_USER:
                return False
        return True

    def copy_to_user(self, dst: int, data: bytes) -> None:
        """Copy ``data`` to user address ``dst``, which must be mapped for user access."""
        data = bytes(data)
        if not self._is_user_mapped(dst, len(data)):
            _fail(errno.EFAULT)
        if dst < USER_MIN_ADDR:
            _fail(errno.EFAULT)
        pos = 0
        while pos < len(data):
            pa = self.page_table.translate(dst + pos)
            if pa is None:
                _fail(errno.EFAULT)
            page = self.memory.setdefault(pa & PAGE_MASK, bytearray(PAGE_SIZE))
            offset = pa & (PAGE_SIZE - 1)
            count = min(len(data) - pos, PAGE_SIZE - offset)
            page[offset:offset + count] = data[pos:pos + count]
            pos += count

    def _map_segment(self, vaddr: int, memsz: int, filesz: int, offset: int, file: bytes) -> None:
        end = vaddr + memsz
        if end > _UINTPTR_MAX or end > USER_SPACE_TOP:
            _fail(errno.EINVAL)
        if offset + filesz > len(file):
            _fail(errno.EIO)

        start = vaddr & ~0xFFF
        stop = (end + 0xFFF) & ~0xFFF
        for addr in range(start, stop, PAGE_SIZE):
            self._map_fresh_page(addr)

        if filesz > 0:
            self.copy_to_user(vaddr, file[offset:offset + filesz])
        if memsz > filesz:
            self.copy_to_user(vaddr + filesz, bytes(memsz - filesz))

    def _load_segments(self, file: bytes, phoff: int, phnum: int) -> tuple[int, int]:
        user_base, user_top = _UINTPTR_MAX, 0
        for i in range(phnum):
            at = phoff + i * _PHDR.size
            if at + _PHDR.size > len(file):
                _fail(errno.ENOEXEC)
            p_type, _flags, p_offset, p_vaddr, _paddr, p_filesz, p_memsz, _align = (
                _PHDR.unpack_from(file, at)
            )
            if p_type != PT_LOAD:
                continue
            self._map_segment(p_vaddr, p_memsz, p_filesz, p_offset, file)
            user_base = min(user_base, p_vaddr)
            user_top = max(user_top, p_vaddr + p_memsz)
        return user_base, user_top

    def _build_stack(
        self, argv: Sequence[str | bytes], envp: Sequence[str | bytes]
    ) -> tuple[int, int, int, int]:
        for addr in range(STACK_BASE - STACK_SIZE, STACK_BASE, PAGE_SIZE):
            self._map_fresh_page(addr)

        args = [_c_string(a) for a in argv]
        envs = [_c_string(e) for e in envp]
        argc, envc = len(args), len(envs)
        strings = sum(len(s) for s in args) + sum(len(s) for s in envs)
        total_size = _INT_SIZE + (argc + 1) * _PTR_SIZE + (envc + 1) * _PTR_SIZE + strings + 32

        buf = bytearray(total_size)
        struct.pack_into("<i", buf, 0, argc)
        argv_at = _INT_SIZE
        envp_at = argv_at + (argc + 1) * _PTR_SIZE
        cursor = envp_at + (envc + 1) * _PTR_SIZE
        for table_at, strings_list in ((argv_at, args), (envp_at, envs)):
            for i, raw in enumerate(strings_list):
                buf[cursor:cursor + len(raw)] = raw
                struct.pack_into(
                    "<Q", buf, table_at + i * _PTR_SIZE, STACK_BASE - STACK_SIZE + cursor
                )
                cursor += len(raw)

        user_sp = (STACK_BASE - total_size) & ~0xF
        self.copy_to_user(user_sp, bytes(buf))
        return user_sp, argc, user_sp + argv_at, user_sp + envp_at

    def load_bytes(
        self,
        image: bytes,
        argv: Sequence[str | bytes] | None = None,
        envp: Sequence[str | bytes] | None = None,
    ) -> ProcessImage:
        """Load the ELF executable held in ``image``."""
        file = bytes(image)
        if len(file) < _EHDR.size:
            _fail(errno.ENOEXEC)
        (ident, e_type, _machine, _version, e_entry, e_phoff, _shoff, _flags,
         _ehsize, _phentsize, e_phnum, _shentsize, _shnum, _shstrndx) = _EHDR.unpack_from(file)
        if ident[:4] != ELFMAG or ident[EI_CLASS] != ELFCLASS64 or e_type not in (ET_EXEC, ET_DYN):
            _fail(errno.ENOEXEC)

        user_base, user_top = self._load_segments(file, e_phoff, e_phnum)
        heap_base = (user_top + 0xFFF) & ~0xFFF

        stack_top, argc, argv_ptr, envp_ptr = self._build_stack(argv or (), envp or ())
        return ProcessImage(
            entry_point=e_entry,
            stack_top=stack_top,
            heap_base=heap_base,
            heap_end=heap_base,
            user_base=user_base,
            user_top=user_top,
            argc=argc,
            argv=argv_ptr,
            envp=envp_ptr,
        )

    def load(
        self,
        path: str | os.PathLike,
        argv: Sequence[str | bytes] | None = None,
        envp: Sequence[str | bytes] | None = None,
    ) -> ProcessImage:
        """Load the ELF executable stored at ``path``."""
        with open(path, "rb") as f:
            data = f.read()
        return self.load_bytes(data, argv, envp)