"""Three-level page tables over simulated, reference-counted physical frames."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

from .pmm import KernelPanic, PhysicalMemoryManager

PAGE_SIZE = 4096
PAGE_SHIFT = 12
PT_LEVELS = 3
PTE_PER_TABLE = 512
LEAF_LEVEL = PT_LEVELS - 1

_WORD_MASK = 0xFFFF_FFFF_FFFF_FFFF
PAGE_MASK = ~(PAGE_SIZE - 1) & _WORD_MASK
_OFFSET_MASK = PAGE_SIZE - 1

PTE_VALID = 1 << 0
PTE_TABLE = 1 << 1
PTE_USER = 1 << 6
PTE_WRITE = 1 << 10
PTE_COW = 1 << 55

KERNEL_REGION_BASE = 0xFFFF000000000000


def page_align(x: int) -> int:
    """Round ``x`` up to a page boundary."""
    return (x + PAGE_SIZE - 1) & PAGE_MASK


def _level_shift(level: int) -> int:
    return PAGE_SHIFT + (PT_LEVELS - 1 - level) * 9


def pte_index(va: int, level: int) -> int:
    """Index of ``va`` in the table at ``level``."""
    return (va >> _level_shift(level)) & 0x1FF


def is_valid(pte: int) -> bool:
    """Whether a page-table entry is marked valid."""
    return bool(pte & PTE_VALID)


@dataclass
class _Frame:
    refcount: int
    data: bytearray


class PageFrames:
    """Simulated physical memory made of reference-counted pages."""

    _FIRST_FRAME = 0x40000000

    def __init__(self) -> None:
        self._frames: dict[int, _Frame] = {}
        self._next = self._FIRST_FRAME

    def allocate(self) -> int:
        """Create a zeroed page with one reference; return its address."""
        pa = self._next
        self._next += PAGE_SIZE
        self._frames[pa] = _Frame(1, bytearray(PAGE_SIZE))
        return pa

    def _frame(self, pa: int) -> _Frame:
        try:
            return self._frames[pa & PAGE_MASK]
        except KeyError:
            raise KeyError(f"no frame at {pa:#x}") from None

    def incref(self, pa: int) -> None:
        """Add a reference to the page holding ``pa``."""
        self._frame(pa).refcount += 1

    def decref(self, pa: int) -> None:
        """Drop a reference; the page is released when none remain."""
        frame = self._frame(pa)
        frame.refcount -= 1
        if frame.refcount <= 0:
            del self._frames[pa & PAGE_MASK]

    def refcount(self, pa: int) -> int:
        """References held on the page, 0 if it does not exist."""
        frame = self._frames.get(pa & PAGE_MASK)
        return frame.refcount if frame else 0

    def read(self, pa: int, length: int) -> bytes:
        """Read ``length`` bytes starting at physical address ``pa``."""
        if length < 0:
            raise ValueError("length must not be negative")
        out = bytearray()
        while length > 0:
            frame = self._frame(pa)
            offset = pa & _OFFSET_MASK
            count = min(length, PAGE_SIZE - offset)
            out += frame.data[offset:offset + count]
            pa += count
            length -= count
        return bytes(out)

    def write(self, pa: int, data: bytes) -> None:
        """Write ``data`` starting at physical address ``pa``."""
        data = bytes(data)
        pos = 0
        while pos < len(data):
            frame = self._frame(pa)
            offset = pa & _OFFSET_MASK
            count = min(len(data) - pos, PAGE_SIZE - offset)
            frame.data[offset:offset + count] = data[pos:pos + count]
            pa += count
            pos += count


class PageTable:
    """An address space: a tree of translation tables rooted at ``root``."""

    def __init__(self, frames: PageFrames, asid: int = 0) -> None:
        self.frames = frames
        self.asid = asid
        self._tables: dict[int, list[int]] = {}
        self.root: int | None = self._new_table()
        self.valid = True

    def _new_table(self) -> int:
        addr = self.frames.allocate()
        self._tables[addr] = [0] * PTE_PER_TABLE
        return addr

    def _slot(self, va: int, target_level: int, alloc: bool) -> tuple[list[int], int] | None:
        if self.root is None:
            raise RuntimeError("page table has been freed")
        table = self._tables[self.root]
        for level in range(target_level):
            idx = pte_index(va, level)
            pte = table[idx]
            if pte & PTE_VALID and pte & PTE_TABLE:
                table = self._tables[pte & PAGE_MASK]
            elif alloc:
                child = self._new_table()
                table[idx] = child | PTE_VALID | PTE_TABLE
                table = self._tables[child]
            else:
                return None
        return table, pte_index(va, target_level)

    def walk(self, va: int, target_level: int = LEAF_LEVEL, alloc: bool = False) -> int | None:
        """Entry for ``va`` at ``target_level``, or None if a table is missing."""
        slot = self._slot(va, target_level, alloc)
        if slot is None:
            return None
        table, idx = slot
        return table[idx]

    def map(self, va: int, pa: int, attr: int) -> None:
        """Map the page at ``va`` to physical page ``pa``."""
        table, idx = self._slot(va, LEAF_LEVEL, True)
        table[idx] = (pa & PAGE_MASK) | attr | PTE_VALID

    def unmap(self, va: int) -> None:
        """Remove the mapping for ``va``, if any."""
        slot = self._slot(va, LEAF_LEVEL, False)
        if slot is not None:
            table, idx = slot
            table[idx] = 0

    def translate(self, va: int) -> int | None:
        """Physical address for ``va``, or None when unmapped."""
        pte = self.walk(va)
        if pte is None or not pte & PTE_VALID:
            return None
        return (pte & PAGE_MASK) | (va & _OFFSET_MASK)

    def mappings(self) -> Iterator[tuple[int, int, int]]:
        """Yield ``(va, pte, level)`` for every valid non-table entry."""
        if self.root is None:
            return
        yield from self._walk_all(self.root, 0, 0)

    def _walk_all(self, table_addr: int, level: int, base_va: int) -> Iterator[tuple[int, int, int]]:
        for i, pte in enumerate(self._tables[table_addr]):
            if not pte & PTE_VALID:
                continue
            va = base_va | (i << _level_shift(level))
            if level < LEAF_LEVEL and pte & PTE_TABLE:
                yield from self._walk_all(pte & PAGE_MASK, level + 1, va)
            else:
                yield va, pte, level

    def clone_user_space(self) -> "PageTable":
        """Copy-on-write clone: pages are shared and mapped read-only in the copy."""
        child = PageTable(self.frames, 0)
        for va, pte, level in list(self.mappings()):
            if level != LEAF_LEVEL:
                continue
            pa = pte & PAGE_MASK
            attr = pte & _OFFSET_MASK
            self.frames.incref(pa)
            child.map(va, pa, attr & ~PTE_WRITE)
        return child

    def free_user_space(self) -> None:
        """Drop every mapped page and the tables themselves."""
        if self.root is None:
            return
        for _va, pte, level in list(self.mappings()):
            if level == LEAF_LEVEL:
                self.frames.decref(pte & PAGE_MASK)
        for addr in self._tables:
            self.frames.decref(addr)
        self._tables.clear()
        self.root = None
        self.valid = False

    def cow_fault(self, fault_addr: int) -> bool:
        """Resolve a write fault on a shared page; False if ``fault_addr`` is unmapped."""
        slot = self._slot(fault_addr, LEAF_LEVEL, False)
        if slot is None:
            return False
        table, idx = slot
        pte = table[idx]
        if not pte & PTE_VALID:
            return False
        old_pa = pte & PAGE_MASK
        if self.frames.refcount(old_pa) > 1:
            new_pa = self.frames.allocate()
            self.frames.write(new_pa, self.frames.read(old_pa, PAGE_SIZE))
            self.frames.decref(old_pa)
            table[idx] = new_pa | (pte & _OFFSET_MASK) | PTE_WRITE
        else:
            table[idx] = pte | PTE_WRITE
        return True

    def destroy_user_range(self, start: int, end: int, pmm: PhysicalMemoryManager) -> None:
        """Unmap ``[start, end)`` and give its pages back to ``pmm``."""
        if start % PAGE_SIZE or end % PAGE_SIZE or start >= end:
            raise KernelPanic("mmu_destroy_user_range: invalid range")
        for addr in range(start, end, PAGE_SIZE):
            phys = self.translate(addr)
            if phys:
                self.unmap(addr)
                pmm.free_page(phys)


class Mmu:
    """Kernel address space and the active translation base."""

    def __init__(self, frames: PageFrames) -> None:
        self.frames = frames
        self.kernel_pt = PageTable(frames, asid=0)
        self.translation_base = self.kernel_pt.root
        self._vbase = KERNEL_REGION_BASE

    def map_identity(self, phys: int, size: int, attr_flags: int) -> None:
        """Map ``[phys, phys + size)`` onto itself in the kernel table."""
        start = phys & PAGE_MASK
        end = page_align(phys + size)
        for pa in range(start, end, PAGE_SIZE):
            self.kernel_pt.map(pa, pa, attr_flags)

    def map_region(self, phys: int, size: int, flags: int) -> int:
        """Map physical memory into the next free kernel window; return its address."""
        va = self._vbase
        aligned = page_align(size)
        for offset in range(0, aligned, PAGE_SIZE):
            self.kernel_pt.map(va + offset, phys + offset, flags)
        self._vbase += aligned
        return va

    def unmap_region(self, va: int, size: int) -> None:
        """Remove kernel mappings covering ``[va, va + size)``."""
        end = page_align(va + size)
        for addr in range(va, end, PAGE_SIZE):
            self.kernel_pt.unmap(addr)

    def activate_user_space(self, pt: PageTable) -> None:
        """Switch translation to ``pt``, tagged with its ASID."""
        if pt.root is None:
            raise RuntimeError("page table has been freed")
        self.translation_base = (pt.asid << 48) | pt.root

    def deactivate_user_space(self) -> None:
        """Switch translation back to the kernel table."""
        self.translation_base = self.kernel_pt.root