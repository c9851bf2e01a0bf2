import pytest

from toskernel.mmu import (
    KERNEL_REGION_BASE,
    LEAF_LEVEL,
    PAGE_SIZE,
    PTE_TABLE,
    PTE_USER,
    PTE_VALID,
    PTE_WRITE,
    Mmu,
    PageFrames,
    PageTable,
    is_valid,
    page_align,
    pte_index,
)
from toskernel.pmm import KernelPanic, PhysicalMemoryManager

USER_VA = 0x400000


def test_page_align_rounds_up():
    assert page_align(0) == 0
    assert page_align(1) == PAGE_SIZE
    assert page_align(PAGE_SIZE) == PAGE_SIZE
    assert page_align(PAGE_SIZE + 1) == 2 * PAGE_SIZE


def test_pte_index_leaf_level_counts_pages():
    assert pte_index(7 * PAGE_SIZE, LEAF_LEVEL) == 7
    assert pte_index(7 * PAGE_SIZE, 0) == 0


def test_is_valid_checks_valid_bit():
    assert is_valid(PTE_VALID | PTE_TABLE) is True
    assert is_valid(PTE_TABLE) is False


def test_frames_read_write_round_trip():
    frames = PageFrames()
    pa = frames.allocate()
    frames.write(pa + 10, b"kernel")
    assert frames.read(pa + 10, 6) == b"kernel"
    assert frames.read(pa, 4) == bytes(4)


def test_frames_refcount_lifecycle():
    frames = PageFrames()
    pa = frames.allocate()
    assert frames.refcount(pa) == 1
    frames.incref(pa)
    assert frames.refcount(pa) == 2
    frames.decref(pa)
    frames.decref(pa)
    assert frames.refcount(pa) == 0
    with pytest.raises(KeyError):
        frames.read(pa, 1)


def test_map_and_translate_keeps_offset():
    frames = PageFrames()
    pt = PageTable(frames)
    pa = frames.allocate()
    pt.map(USER_VA, pa, PTE_USER | PTE_WRITE)
    assert pt.translate(USER_VA + 0x123) == pa + 0x123
    pte = pt.walk(USER_VA, LEAF_LEVEL, False)
    assert pte & PTE_VALID and pte & PTE_USER


def test_unmapped_address_translates_to_none():
    pt = PageTable(PageFrames())
    assert pt.translate(USER_VA) is None
    assert pt.walk(USER_VA, LEAF_LEVEL, False) is None


def test_unmap_removes_mapping():
    frames = PageFrames()
    pt = PageTable(frames)
    pa = frames.allocate()
    pt.map(USER_VA, pa, PTE_USER)
    pt.unmap(USER_VA)
    assert pt.translate(USER_VA) is None


def test_mappings_lists_leaf_entries():
    frames = PageFrames()
    pt = PageTable(frames)
    vas = [USER_VA, USER_VA + PAGE_SIZE]
    for va in vas:
        pt.map(va, frames.allocate(), PTE_USER)
    found = list(pt.mappings())
    assert sorted(va for va, _pte, _level in found) == vas
    assert all(level == LEAF_LEVEL for _va, _pte, level in found)


def test_clone_shares_pages_read_only():
    frames = PageFrames()
    pt = PageTable(frames)
    pa = frames.allocate()
    pt.map(USER_VA, pa, PTE_USER | PTE_WRITE)
    child = pt.clone_user_space()
    assert child.translate(USER_VA) == pa
    assert frames.refcount(pa) == 2
    assert not child.walk(USER_VA) & PTE_WRITE
    assert pt.walk(USER_VA) & PTE_WRITE


def test_cow_fault_on_shared_page_copies_it():
    frames = PageFrames()
    pt = PageTable(frames)
    pa = frames.allocate()
    frames.write(pa, b"shared data")
    pt.map(USER_VA, pa, PTE_USER | PTE_WRITE)
    child = pt.clone_user_space()
    assert child.cow_fault(USER_VA) is True
    new_pa = child.translate(USER_VA)
    assert new_pa != pa
    assert frames.read(new_pa, 11) == b"shared data"
    assert frames.refcount(pa) == 1
    assert child.walk(USER_VA) & PTE_WRITE


def test_cow_fault_on_sole_owner_only_sets_write():
    frames = PageFrames()
    pt = PageTable(frames)
    pa = frames.allocate()
    pt.map(USER_VA, pa, PTE_USER)
    assert pt.cow_fault(USER_VA) is True
    assert pt.translate(USER_VA) == pa
    assert pt.walk(USER_VA) & PTE_WRITE


def test_cow_fault_on_unmapped_address_is_refused():
    pt = PageTable(PageFrames())
    assert pt.cow_fault(USER_VA) is False


def test_free_user_space_releases_references():
    frames = PageFrames()
    pt = PageTable(frames)
    pa = frames.allocate()
    pt.map(USER_VA, pa, PTE_USER)
    child = pt.clone_user_space()
    child.free_user_space()
    assert frames.refcount(pa) == 1
    assert child.root is None
    assert child.valid is False
    with pytest.raises(RuntimeError):
        child.translate(USER_VA)
    pt.free_user_space()
    assert frames.refcount(pa) == 0


def test_destroy_user_range_returns_pages_to_pmm():
    pmm = PhysicalMemoryManager(0x100000, 4 * PAGE_SIZE)
    pt = PageTable(PageFrames())
    pt.map(USER_VA, pmm.alloc_page(), PTE_USER)
    pt.map(USER_VA + PAGE_SIZE, pmm.alloc_page(), PTE_USER)
    pt.destroy_user_range(USER_VA, USER_VA + 4 * PAGE_SIZE, pmm)
    assert pmm.free_count() == 4
    assert pt.translate(USER_VA) is None
    assert pt.translate(USER_VA + PAGE_SIZE) is None


@pytest.mark.parametrize(
    "start,end",
    [(USER_VA + 1, USER_VA + PAGE_SIZE), (USER_VA, USER_VA + 1), (USER_VA, USER_VA)],
)
def test_destroy_user_range_rejects_bad_range(start, end):
    pmm = PhysicalMemoryManager(0x100000, PAGE_SIZE)
    pt = PageTable(PageFrames())
    with pytest.raises(KernelPanic):
        pt.destroy_user_range(start, end, pmm)


def test_map_region_hands_out_consecutive_windows():
    mmu = Mmu(PageFrames())
    phys = 0x200000
    first = mmu.map_region(phys, 100, PTE_WRITE)
    second = mmu.map_region(phys, 100, PTE_WRITE)
    assert first == KERNEL_REGION_BASE
    assert second == first + page_align(100)
    assert mmu.kernel_pt.translate(first) == phys


def test_unmap_region_clears_window():
    mmu = Mmu(PageFrames())
    va = mmu.map_region(0x200000, 2 * PAGE_SIZE, PTE_WRITE)
    mmu.unmap_region(va, 2 * PAGE_SIZE)
    assert mmu.kernel_pt.translate(va) is None
    assert mmu.kernel_pt.translate(va + PAGE_SIZE) is None


def test_map_identity_maps_onto_itself():
    mmu = Mmu(PageFrames())
    phys = 0x300000
    mmu.map_identity(phys, 2 * PAGE_SIZE, PTE_WRITE)
    assert mmu.kernel_pt.translate(phys) == phys
    assert mmu.kernel_pt.translate(phys + PAGE_SIZE) == phys + PAGE_SIZE


def test_activate_and_deactivate_user_space():
    frames = PageFrames()
    mmu = Mmu(frames)
    pt = PageTable(frames, asid=5)
    mmu.activate_user_space(pt)
    assert mmu.translation_base == (pt.asid << 48) | pt.root
    mmu.deactivate_user_space()
    assert mmu.translation_base == mmu.kernel_pt.root