"""Physical page allocator backed by a free-page stack."""

from __future__ import annotations

PAGE_SIZE = 4096
MAX_PAGES = 65536


class KernelPanic(RuntimeError):
    """An unrecoverable kernel invariant was broken."""


class PhysicalMemoryManager:
    """Hands out physical pages last-in, first-out."""

    def __init__(self, mem_start: int, mem_size: int) -> None:
        num_pages = mem_size // PAGE_SIZE
        if num_pages > MAX_PAGES:
            raise KernelPanic("PMM: too many pages")
        self.base_addr = mem_start
        self._free = [mem_start + i * PAGE_SIZE for i in range(num_pages)]

    def alloc_page(self) -> int:
        """Return the address of a free page."""
        if not self._free:
            raise MemoryError("PMM: out of physical pages")
        return self._free.pop()

    def free_page(self, phys_addr: int) -> None:
        """Return a page to the free stack."""
        if len(self._free) >= MAX_PAGES:
            raise KernelPanic("PMM: free list overflow")
        self._free.append(phys_addr)

    def free_count(self) -> int:
        """Number of pages available."""
        return len(self._free)