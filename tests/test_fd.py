import errno

import pytest

from toskernel.fd import FdTable, FdType, MAX_FDS


def test_alloc_uses_lowest_free_slots():
    table = FdTable()
    assert table.alloc(FdType.SOCKET, "a") == 0
    assert table.alloc(FdType.SOCKET, "b") == 1


def test_get_returns_object_for_matching_type():
    table = FdTable()
    obj = object()
    fd = table.alloc(FdType.SOCKET, obj)
    assert table.get(fd, FdType.SOCKET) is obj


def test_get_with_wrong_type_returns_none():
    table = FdTable()
    fd = table.alloc(FdType.SOCKET, "sock")
    assert table.get(fd, FdType.NONE) is None


@pytest.mark.parametrize("fd", [-1, MAX_FDS, MAX_FDS + 5])
def test_get_out_of_range_returns_none(fd):
    table = FdTable()
    table.alloc(FdType.SOCKET, "sock")
    assert table.get(fd, FdType.SOCKET) is None


def test_close_frees_slot_for_reuse():
    table = FdTable()
    table.alloc(FdType.SOCKET, "a")
    table.alloc(FdType.SOCKET, "b")
    table.close(0)
    assert table.get(0, FdType.SOCKET) is None
    assert table.alloc(FdType.SOCKET, "c") == 0
    assert table.get(1, FdType.SOCKET) == "b"


def test_close_out_of_range_leaves_table_alone():
    table = FdTable()
    table.alloc(FdType.SOCKET, "a")
    table.close(-1)
    table.close(MAX_FDS)
    assert table.get(0, FdType.SOCKET) == "a"


def test_full_table_raises_emfile():
    table = FdTable(2)
    table.alloc(FdType.SOCKET, "a")
    table.alloc(FdType.SOCKET, "b")
    with pytest.raises(OSError) as info:
        table.alloc(FdType.SOCKET, "c")
    assert info.value.errno == errno.EMFILE


def test_reset_clears_all_descriptors():
    table = FdTable()
    table.alloc(FdType.SOCKET, "a")
    table.alloc(FdType.SOCKET, "b")
    table.reset()
    assert table.get(0, FdType.SOCKET) is None
    assert table.alloc(FdType.SOCKET, "c") == 0