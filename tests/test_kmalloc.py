import pytest

from toskernel.kmalloc import KernelHeap
from toskernel.mmu import PAGE_SIZE, PageFrames, PageTable
from toskernel.pmm import KernelPanic, PhysicalMemoryManager

HEAP_BASE = 0x10000000
HEAP_SIZE = 0x10000
PMM_START = 0x200000
PMM_SIZE = 0x100000


@pytest.fixture
def page_table():
    return PageTable(PageFrames())


@pytest.fixture
def pmm():
    return PhysicalMemoryManager(PMM_START, PMM_SIZE)


@pytest.fixture
def heap(page_table, pmm):
    return KernelHeap(HEAP_BASE, HEAP_SIZE, page_table, pmm)


def test_fresh_heap_is_all_free(heap):
    assert heap.free_bytes() == HEAP_SIZE
    assert heap.used_bytes() == 0


def test_first_allocation_starts_at_base(heap):
    addr = heap.malloc(100)
    assert addr == HEAP_BASE
    assert heap.used_bytes() == 100


def test_allocations_do_not_overlap_and_are_aligned(heap):
    first = heap.malloc(10)
    second = heap.malloc(10)
    assert second % 8 == 0
    assert second >= first + 10


def test_used_plus_free_is_heap_size(heap):
    a = heap.malloc(123)
    heap.malloc_aligned(50, 256)
    heap.malloc(7)
    heap.free(a)
    assert heap.used_bytes() + heap.free_bytes() == HEAP_SIZE


def test_freeing_everything_merges_blocks(heap):
    addrs = [heap.malloc(64) for _ in range(3)]
    for addr in addrs:
        heap.free(addr)
    assert heap.free_bytes() == HEAP_SIZE
    assert heap.malloc(HEAP_SIZE) == HEAP_BASE


def test_freed_block_is_reused(heap):
    a = heap.malloc(32)
    heap.malloc(32)
    heap.free(a)
    assert heap.malloc(16) == a


def test_double_free_panics(heap):
    addr = heap.malloc(16)
    heap.free(addr)
    with pytest.raises(KernelPanic):
        heap.free(addr)


def test_free_of_unknown_address_panics(heap):
    heap.malloc(16)
    with pytest.raises(KernelPanic):
        heap.free(HEAP_BASE + 3)


def test_free_of_null_is_ignored(heap):
    heap.malloc(16)
    heap.free(None)
    heap.free(0)
    assert heap.used_bytes() == 16


def test_zero_size_malloc_returns_none(heap):
    assert heap.malloc(0) is None


def test_aligned_allocation(heap):
    heap.malloc(3)
    addr = heap.malloc_aligned(64, PAGE_SIZE)
    assert addr % PAGE_SIZE == 0
    assert heap.used_bytes() == 3 + 64


@pytest.mark.parametrize("alignment", [0, 3, 24])
def test_invalid_alignment_panics(heap, alignment):
    with pytest.raises(KernelPanic):
        heap.malloc_aligned(16, alignment)


def test_aligned_zero_size_panics(heap):
    with pytest.raises(KernelPanic):
        heap.malloc_aligned(0, 16)


@pytest.mark.parametrize("count,size", [(0, 4), (4, 0), (2**63, 4)])
def test_calloc_invalid_args_panic(heap, count, size):
    with pytest.raises(KernelPanic):
        heap.calloc(count, size)


def test_calloc_reserves_count_times_size(heap):
    addr = heap.calloc(4, 8)
    assert addr == HEAP_BASE
    assert heap.used_bytes() == 4 * 8


def test_out_of_heap_panics(heap):
    with pytest.raises(KernelPanic):
        heap.malloc(HEAP_SIZE + 1)


def test_allocation_maps_backing_pages(heap, page_table):
    addr = heap.malloc(2 * PAGE_SIZE)
    for va in (addr, addr + PAGE_SIZE):
        phys = page_table.translate(va)
        assert phys is not None
        assert PMM_START <= phys < PMM_START + PMM_SIZE


def test_backing_pages_come_from_pmm(heap, pmm):
    before = pmm.free_count()
    heap.malloc(PAGE_SIZE)
    assert pmm.free_count() < before


def test_out_of_physical_memory_panics(page_table):
    small = PhysicalMemoryManager(PMM_START, 2 * PAGE_SIZE)
    heap = KernelHeap(HEAP_BASE, HEAP_SIZE, page_table, small)
    with pytest.raises(KernelPanic):
        heap.malloc(2 * PAGE_SIZE)


def test_no_pages_for_node_arena_panics(page_table):
    empty = PhysicalMemoryManager(PMM_START, 0)
    with pytest.raises(KernelPanic):
        KernelHeap(HEAP_BASE, HEAP_SIZE, page_table, empty)