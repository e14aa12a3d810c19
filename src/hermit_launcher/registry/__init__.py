"""Instance registry backends."""

from hermit_launcher.registry.base import InstanceRegistry
from hermit_launcher.registry.file_registry import FileInstanceRegistry
from hermit_launcher.registry.memory_registry import MemoryInstanceRegistry
from hermit_launcher.registry.sqlite_registry import SqliteInstanceRegistry


def create_registry(backend: str, cache_dir: str) -> InstanceRegistry:
    if backend == "file":
        return FileInstanceRegistry(cache_dir)
    elif backend == "sqlite":
        return SqliteInstanceRegistry(cache_dir)
    elif backend == "memory":
        return MemoryInstanceRegistry()
    else:
        raise ValueError(f"Unknown registry backend: {backend}")


__all__ = [
    "InstanceRegistry",
    "FileInstanceRegistry",
    "SqliteInstanceRegistry",
    "MemoryInstanceRegistry",
    "create_registry",
]
