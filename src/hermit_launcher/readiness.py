"""Bounded readiness polling for dependent services.

:func:`ensure` never re-launches a dependency that is already reachable.
Timeout policy (fatal vs advisory) belongs to the caller.
"""

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable
from enum import Enum

import httpx

logger = logging.getLogger(__name__)

Check = Callable[[], Awaitable[bool]]
Launch = Callable[[], Awaitable[None]]


class Readiness(str, Enum):
    READY = "ready"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


async def ensure(
    check: Check,
    launch: Launch | None,
    timeout: float,
    *,
    interval: float = 1.0,
    cancel: asyncio.Event | None = None,
) -> Readiness:
    """Return READY as soon as *check* passes, launching at most once.

    If the first check fails, *launch* is awaited exactly once (its errors
    are logged, not raised) and *check* is polled every *interval* seconds
    until it passes, *timeout* elapses, or *cancel* is set.
    """
    if await check():
        return Readiness.READY

    if launch is not None:
        try:
            await launch()
        except Exception as exc:
            logger.warning("Launch action failed, still waiting for readiness: %s", exc)

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        remaining = deadline - loop.time()
        if remaining <= 0:
            return Readiness.TIMED_OUT
        if await _pause(min(interval, remaining), cancel):
            return Readiness.CANCELLED
        if await check():
            return Readiness.READY


async def _pause(delay: float, cancel: asyncio.Event | None) -> bool:
    """Sleep for *delay*; return True if *cancel* was set meanwhile."""
    if cancel is None:
        await asyncio.sleep(delay)
        return False
    try:
        await asyncio.wait_for(cancel.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return False
    return True


# ------------------------------------------------------------------
# Reusable checks and launch actions
# ------------------------------------------------------------------


async def http_ok(url: str, timeout: float = 2.0) -> bool:
    """True if ``GET url`` answers with a 2xx status."""
    try:
        async with httpx.AsyncClient(timeout=httpx.Timeout(timeout)) as client:
            resp = await client.get(url)
            return resp.is_success
    except httpx.HTTPError:
        return False


async def command_ok(argv: list[str]) -> bool:
    """True if *argv* runs and exits with status 0."""
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError:
        return False
    return await proc.wait() == 0


async def launch_detached(argv: list[str]) -> None:
    """Start *argv* in its own session without waiting for it."""
    logger.debug("Launching %s", argv)
    await asyncio.create_subprocess_exec(
        *argv,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.DEVNULL,
        env=os.environ.copy(),
        start_new_session=True,
    )
