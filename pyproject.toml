[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "toskernel"
version = "0.1.0"
description = "Core subsystems of a small kernel as plain Python objects: page allocators, page tables, heap, VFS, devfs, processes, scheduler, syscalls and an ELF loader"
requires-python = ">=3.10"
dependencies = []
keywords = ["kernel", "operating-system", "scheduler", "mmu", "vfs", "elf", "simulation"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Education",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Operating System Kernels",
    "Topic :: Education",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["toskernel"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
