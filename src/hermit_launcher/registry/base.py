"""InstanceRegistry protocol: the shared set of active session ids."""

from typing import Protocol


class InstanceRegistry(Protocol):
    """Persisted set of instance ids shared by independent sessions.

    Implementations must serialise read-modify-write across processes.
    An absent or empty registry means "no active instances".
    """

    async def register(self, instance_id: str) -> None:
        """Add *instance_id* to the set (no-op if already present)."""
        ...

    async def unregister(self, instance_id: str) -> bool:
        """Remove *instance_id*.  Returns True when no instances remain."""
        ...

    async def list_instances(self) -> list[str]:
        """Return the active instance ids in registration order."""
        ...

    async def clear(self) -> None:
        """Forget every instance and remove any backing file."""
        ...
