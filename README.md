# toskernel

`toskernel` models the core of a small kernel as plain Python objects.
You can create each subsystem, drive it and inspect it from a test or an
interactive session. Nothing here touches real hardware. Physical memory,
page contents and CPUs are all simulated.

## What is inside

- **`toskernel.spinlock`**
  - `SpinLock` offers `acquire`, `release` and `try_acquire`.
  - It also works as a context manager.
  - Releasing a lock that is not held does nothing.
- **`toskernel.fd`**
  - `FdTable` is a fixed-size descriptor table, 64 slots by default. Slots hold objects tagged with an `FdType`.
  - `alloc` uses the lowest free slot. It raises `OSError(EMFILE)` when the table is full.
  - `get` returns `None` when the descriptor is unused or the type does not match.
- **`toskernel.pipe`**
  - `Pipe` is a non-blocking FIFO holding at most 4096 bytes.
  - `write` takes as much as fits and returns the count.
  - `read` returns what is available.
- **`toskernel.pmm`**
  - `PhysicalMemoryManager` keeps a last-in, first-out stack of free 4 KiB pages.
  - `alloc_page` raises `MemoryError` when no pages are left.
  - It raises `KernelPanic` when given more than 65536 pages, or when the free list overflows.
- **`toskernel.mmu`**
  - `PageFrames` holds simulated, reference-counted physical pages.
  - `PageTable` is a three-level table with 512 entries per level. It supports:
    - `map`, `unmap` and `translate`
    - `mappings()` iteration
    - copy-on-write `clone_user_space` and `cow_fault`
    - `free_user_space`
    - `destroy_user_range`, which hands pages back to a `PhysicalMemoryManager`
  - `Mmu` does the following:
    - identity mapping and kernel-window region mapping
    - switching the active translation base, tagged with the ASID
  - Helper functions are `page_align`, `pte_index` and `is_valid`.
- **`toskernel.kmalloc`**
  - `KernelHeap` is a first-fit heap that splits blocks on allocation and merges them on free.
  - Methods are `malloc`, `malloc_aligned`, `calloc`, `free`, `used_bytes` and `free_bytes`.
  - It maps heap pages into a `PageTable` on first use.
  - Running out of memory, bad alignment, and invalid or double frees raise `KernelPanic`.
- **`toskernel.vfs`**
  - `Vfs` works over `Vnode` subclasses. It offers:
    - path resolution
    - `open`, which creates the file when `os.O_CREAT` is set
    - `close`, `read`, `write` and `lseek` (`Whence.SET` / `Whence.CUR` only)
    - `stat`, `fstat` and `readdir`
    - `mkdir`, `unlink`, `rmdir` and `truncate`
  - Open files are `OpenFile` records. Node kinds are `VnodeType`.
- **`toskernel.devfs`**
  - `Devfs` is a flat directory of `DevfsEntry` devices. The most recent registration takes precedence.
  - `NullDevice` returns end of file on every read and discards writes.
  - `make_null_entry()` builds the `null` entry.
- **`toskernel.process`**
  - `Process` carries the process state (`ProcessState`). Each process has a 128-slot file table.
  - `ProcessTable` hands out pids starting at 1. It offers `create`, `destroy` and `lookup`.
  - `CurrentProcess` records the process running on each CPU.
- **`toskernel.syscalls`**
  - `FileSyscalls` works on the current process's descriptor table. It offers:
    - `open`, `close`, `read`, `write`, `lseek`
    - `stat`, `fstat`
    - `mkdir`, `unlink`, `rmdir`, `truncate`
    - `dup`, `dup2`
    - `pipe`, which returns two adjacent descriptors
- **`toskernel.sockets`**
  - `SocketTable` supports IPv4 datagram sockets only, through `socket`, `bind` and `sendto`.
  - Sending goes through a `udp_send` callable that you supply. It uses the first interface you pass in.
  - `recvfrom` always raises `OSError(EAGAIN)`.
- **`toskernel.scheduler`**
  - `Scheduler` keeps per-CPU run queues with 32 priority levels.
  - Real-time threads are picked before time-sharing threads. System-class threads share the time-sharing queues.
  - It charges time-sharing quanta and keeps a sleep queue driven by a `clock` callable.
  - When nothing is runnable it falls back to the CPU's idle thread.
  - It calls an optional `context_switch` callback whenever a CPU changes thread.
- **`toskernel.thread`**
  - `ThreadManager` provides `create`, `destroy`, `lookup`, `yield_`, `sleep`, `block`, `unblock`, `join`, `detach` and `exit`.
- **`toskernel.exec_loader`**
  - `ElfLoader` loads an ELF64 executable, from a path (`load`) or from bytes (`load_bytes`), into a `PageTable`.
  - It builds the argument and environment stack.
  - It returns a `ProcessImage`.
  - It raises `ExecError` (an `OSError`) on failure.
- **`toskernel.trap`**
  - `TrapFrame` packs and unpacks the 280-byte register frame.
  - `handle_trap` passes the number in x8 and the arguments in x0–x5 to your dispatch function. The result goes into x0.

## Installing

```
pip install .
pip install .[test]   # with pytest
```

## A short tour

```python
from toskernel.pipe import Pipe
from toskernel.pmm import PhysicalMemoryManager

pipe = Pipe()
pipe.write(b"hello")
assert pipe.read(3) == b"hel"
assert len(pipe) == 2

pmm = PhysicalMemoryManager(0x100000, 4 * 4096)
page = pmm.alloc_page()
pmm.free_page(page)
assert pmm.free_count() == 4
```

```python
from toskernel.devfs import Devfs, make_null_entry
from toskernel.vfs import Vfs

devfs = Devfs()
devfs.register(make_null_entry())
vfs = Vfs()
vfs.mount_root(devfs.mount())

null = vfs.open("/null", 0)
assert vfs.read(null, 16) == b""
assert vfs.write(null, b"discarded") == 9
```

## Errors

Most failures raise `OSError` carrying the matching `errno` code, for example `ENOENT`, `EINVAL`, `EBADF` or `EMFILE`. Broken kernel invariants raise `toskernel.pmm.KernelPanic`. A few calls raise ordinary Python exceptions instead:

- `MemoryError` when the page allocator is empty
- `ValueError` for an unknown CPU
- `LookupError` for an unknown thread id

## What it does not do

The package does not do any of the following:

- Boot, run user code or switch real CPU contexts. A context switch is only a callback you supply.
- Include an on-disk file system. File trees are whatever `Vnode` subclasses you mount.
- Provide a network stack. UDP sending is a callable you provide, and no datagrams are ever received.
- Offer any command-line program.

## Running the tests

```
pytest
```