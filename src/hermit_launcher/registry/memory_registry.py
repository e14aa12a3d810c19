"""In-memory instance registry for tests and embedded usage."""

import asyncio


class MemoryInstanceRegistry:
    """Ephemeral single-process registry.  Useful for tests."""

    def __init__(self) -> None:
        self._ids: list[str] = []
        self._lock = asyncio.Lock()

    async def register(self, instance_id: str) -> None:
        async with self._lock:
            if instance_id not in self._ids:
                self._ids.append(instance_id)

    async def unregister(self, instance_id: str) -> bool:
        async with self._lock:
            self._ids = [i for i in self._ids if i != instance_id]
            return not self._ids

    async def list_instances(self) -> list[str]:
        return list(self._ids)

    async def clear(self) -> None:
        async with self._lock:
            self._ids.clear()
