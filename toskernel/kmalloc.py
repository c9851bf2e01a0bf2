"""First-fit kernel heap with on-demand page backing."""

from __future__ import annotations

from dataclasses import dataclass

from .mmu import PAGE_SIZE, PTE_VALID, PTE_WRITE, PageTable
from .pmm import KernelPanic, PhysicalMemoryManager

KMAGIC = 0xCAFEBABE
NODE_PAGE_SIZE = 0x1000
SIZE_MAX = 2**64 - 1

_NODE_SIZE = 40
_NODES_PER_PAGE = NODE_PAGE_SIZE // _NODE_SIZE
_DEFAULT_ALIGN = 8


def _align_up(value: int, align: int) -> int:
    return (value + align - 1) & ~(align - 1)


@dataclass(eq=False)
class _Block:
    start: int
    size: int
    is_free: bool
    magic: int = KMAGIC


class KernelHeap:
    """Address-ordered list of heap blocks, split on allocation and merged on free.

    Block descriptors live in an arena of physical pages taken from ``pmm``;
    heap pages are mapped into ``page_table`` the first time they are handed out.
    """

    def __init__(
        self,
        heap_base: int,
        heap_size: int,
        page_table: PageTable,
        pmm: PhysicalMemoryManager,
    ) -> None:
        self.heap_base = heap_base
        self.heap_end = heap_base + heap_size
        self._page_table = page_table
        self._pmm = pmm
        self._node_capacity = 0
        self._nodes_used = 0
        self._expand_node_arena()
        self._blocks: list[_Block] = [self._new_block(heap_base, heap_size, True)]

    def _take_page(self, message: str) -> int:
        try:
            return self._pmm.alloc_page()
        except MemoryError:
            raise KernelPanic(message) from None

    def _expand_node_arena(self) -> None:
        phys = self._take_page("kmalloc: out of node memory")
        self._page_table.map(phys, phys, PTE_VALID | PTE_WRITE)
        self._node_capacity += _NODES_PER_PAGE

    def _new_block(self, start: int, size: int, is_free: bool) -> _Block:
        if self._nodes_used >= self._node_capacity:
            self._expand_node_arena()
        self._nodes_used += 1
        return _Block(start, size, is_free)

    def _back(self, block: _Block) -> None:
        for addr in range(block.start, block.start + block.size, PAGE_SIZE):
            if self._page_table.translate(addr) is None:
                phys = self._take_page("kmalloc: out of physical memory")
                self._page_table.map(addr, phys, PTE_VALID | PTE_WRITE)

    def _allocate(self, size: int, align: int) -> int:
        for index, block in enumerate(self._blocks):
            if not block.is_free:
                continue
            padding = _align_up(block.start, align) - block.start
            if block.size < padding + size:
                continue
            if padding:
                self._blocks.insert(index, self._new_block(block.start, padding, True))
                index += 1
                block.start += padding
                block.size -= padding
            if block.size > size:
                remain = self._new_block(block.start + size, block.size - size, True)
                self._blocks.insert(index + 1, remain)
                block.size = size
            block.is_free = False
            self._back(block)
            return block.start
        raise KernelPanic("kmalloc: out of memory")

    def malloc(self, size: int) -> int | None:
        """Allocate ``size`` bytes aligned to a pointer; None for a zero size."""
        if not size:
            return None
        return self._allocate(size, _DEFAULT_ALIGN)

    def malloc_aligned(self, size: int, alignment: int) -> int:
        """Allocate ``size`` bytes at a multiple of the power-of-two ``alignment``."""
        if not size or alignment <= 0 or alignment & (alignment - 1):
            raise KernelPanic("kmalloc_aligned: invalid alignment")
        return self._allocate(size, alignment)

    def calloc(self, count: int, size: int) -> int | None:
        """Allocate room for ``count`` items of ``size`` bytes each."""
        if not count or not size or count > SIZE_MAX // size:
            raise KernelPanic("kcalloc: invalid args")
        return self.malloc(count * size)

    def free(self, addr: int | None) -> None:
        """Release the block starting at ``addr``; a null address is ignored."""
        if not addr:
            return
        index = next((i for i, b in enumerate(self._blocks) if b.start == addr), None)
        if index is None:
            raise KernelPanic("kfree: invalid or double free")
        block = self._blocks[index]
        if block.magic != KMAGIC or block.is_free:
            raise KernelPanic("kfree: invalid or double free")
        block.is_free = True

        if index + 1 < len(self._blocks):
            nxt = self._blocks[index + 1]
            if nxt.is_free and block.start + block.size == nxt.start:
                block.size += nxt.size
                del self._blocks[index + 1]
        if index > 0:
            prev = self._blocks[index - 1]
            if prev.is_free and prev.start + prev.size == block.start:
                prev.size += block.size
                del self._blocks[index]

    def used_bytes(self) -> int:
        """Bytes currently handed out."""
        return sum(b.size for b in self._blocks if not b.is_free)

    def free_bytes(self) -> int:
        """Bytes still available, padding fragments included."""
        return sum(b.size for b in self._blocks if b.is_free)