"""Cross-process advisory file lock based on ``fcntl.flock``.

The lock is tied to an open file description, so it is released by the
kernel if the holding process dies, and two handles in the same process
exclude each other as well.  POSIX only.
"""

import asyncio
import fcntl
import logging
import os
import time

logger = logging.getLogger(__name__)


class FileLock:
    """Exclusive lock on *path*, usable with ``with`` or ``async with``."""

    def __init__(self, path: str, timeout: float | None = None, poll_interval: float = 0.05) -> None:
        self.path = path
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._fd: int | None = None

    @property
    def locked(self) -> bool:
        return self._fd is not None

    def _open(self) -> int:
        if self._fd is not None:
            raise RuntimeError(f"Lock {self.path} is already held by this handle")
        lock_dir = os.path.dirname(self.path)
        if lock_dir:
            os.makedirs(lock_dir, exist_ok=True)
        return os.open(self.path, os.O_RDWR | os.O_CREAT, 0o600)

    @staticmethod
    def _try_lock(fd: int) -> bool:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            return False
        return True

    def _timed_out(self, deadline: float | None) -> None:
        if deadline is not None and time.monotonic() >= deadline:
            raise TimeoutError(f"Timed out waiting for lock {self.path}")

    def acquire(self) -> None:
        fd = self._open()
        deadline = None if self.timeout is None else time.monotonic() + self.timeout
        try:
            while not self._try_lock(fd):
                self._timed_out(deadline)
                time.sleep(self.poll_interval)
        except BaseException:
            os.close(fd)
            raise
        self._fd = fd

    async def acquire_async(self, cancel: asyncio.Event | None = None) -> bool:
        """Acquire without blocking the event loop.

        Returns False, without holding the lock, if *cancel* is set while
        waiting.  Raises ``TimeoutError`` after ``timeout`` seconds.
        """
        fd = self._open()
        deadline = None if self.timeout is None else time.monotonic() + self.timeout
        logged = False
        try:
            while not self._try_lock(fd):
                self._timed_out(deadline)
                if not logged:
                    logger.info("Waiting for another session to release %s...", os.path.basename(self.path))
                    logged = True
                if cancel is None:
                    await asyncio.sleep(self.poll_interval)
                    continue
                try:
                    await asyncio.wait_for(cancel.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    continue
                os.close(fd)
                return False
        except BaseException:
            os.close(fd)
            raise
        self._fd = fd
        return True

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None

    def __enter__(self) -> "FileLock":
        self.acquire()
        return self

    def __exit__(self, *exc) -> None:
        self.release()

    async def __aenter__(self) -> "FileLock":
        await self.acquire_async()
        return self

    async def __aexit__(self, *exc) -> None:
        self.release()
