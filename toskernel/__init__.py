"""Simulated kernel core: memory managers, page tables, heap, VFS, devfs,
processes, file and socket syscalls, scheduler, threads, ELF loading and traps."""

__version__ = "0.1.0"