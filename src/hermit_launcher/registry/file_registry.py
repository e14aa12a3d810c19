"""Newline-separated instance registry guarded by a cross-process file lock.

Layout: ``<cache_dir>/.instances`` holds one id per line, no duplicates;
``<cache_dir>/.instances.lock`` is the lock file.  Rewrites go through a
temp file and ``os.replace`` so a crash never leaves a torn registry.
"""

import asyncio
import logging
import os
import tempfile

from hermit_launcher.locking import FileLock

logger = logging.getLogger(__name__)

INSTANCES_FILENAME = ".instances"


class FileInstanceRegistry:
    def __init__(self, cache_dir: str, lock_timeout: float | None = 30.0) -> None:
        self.cache_dir = cache_dir
        self.path = os.path.join(cache_dir, INSTANCES_FILENAME)
        self._lock_path = self.path + ".lock"
        self._lock_timeout = lock_timeout

    def _lock(self) -> FileLock:
        return FileLock(self._lock_path, timeout=self._lock_timeout)

    # ------------------------------------------------------------------
    # Unlocked helpers (caller holds the lock)
    # ------------------------------------------------------------------

    def _read(self) -> list[str]:
        try:
            with open(self.path) as f:
                lines = f.read().splitlines()
        except FileNotFoundError:
            return []
        ids: list[str] = []
        for line in lines:
            line = line.strip()
            if line and line not in ids:
                ids.append(line)
        return ids

    def _write(self, ids: list[str]) -> None:
        if not ids:
            if os.path.exists(self.path):
                os.unlink(self.path)
            return
        fd, tmp_path = tempfile.mkstemp(dir=self.cache_dir, prefix=".instances-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                f.write("\n".join(ids))
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    # ------------------------------------------------------------------
    # Synchronous operations
    # ------------------------------------------------------------------

    def register_sync(self, instance_id: str) -> None:
        os.makedirs(self.cache_dir, exist_ok=True)
        with self._lock():
            ids = self._read()
            if instance_id not in ids:
                ids.append(instance_id)
            self._write(ids)
        logger.debug("Registered instance %s (%d active)", instance_id, len(ids))

    def unregister_sync(self, instance_id: str) -> bool:
        if not os.path.isdir(self.cache_dir):
            return True
        with self._lock():
            ids = [i for i in self._read() if i != instance_id]
            self._write(ids)
        logger.debug("Unregistered instance %s (%d remaining)", instance_id, len(ids))
        return not ids

    def list_sync(self) -> list[str]:
        if not os.path.isdir(self.cache_dir):
            return []
        with self._lock():
            return self._read()

    def clear_sync(self) -> None:
        if not os.path.isdir(self.cache_dir):
            return
        with self._lock():
            self._write([])

    # ------------------------------------------------------------------
    # InstanceRegistry protocol
    # ------------------------------------------------------------------

    async def register(self, instance_id: str) -> None:
        await asyncio.to_thread(self.register_sync, instance_id)

    async def unregister(self, instance_id: str) -> bool:
        return await asyncio.to_thread(self.unregister_sync, instance_id)

    async def list_instances(self) -> list[str]:
        return await asyncio.to_thread(self.list_sync)

    async def clear(self) -> None:
        await asyncio.to_thread(self.clear_sync)
