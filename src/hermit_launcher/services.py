"""Control surface for the shared gateway services.

The gateway itself runs in a container managed by a compose-compatible
runtime; this module only starts, stops, inspects and tails it.
"""

import asyncio
import logging
import os
import sys
from collections.abc import AsyncIterator
from typing import Protocol

from hermit_launcher.errors import ServiceControlError
from hermit_launcher.readiness import http_ok

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# ServiceControl protocol
# ------------------------------------------------------------------


class ServiceControl(Protocol):
    """Start/stop/inspect the shared services.

    ``up`` must accept the generated routing config verbatim.
    """

    async def up(self, config_path: str, token: str) -> None: ...

    async def down(self) -> None: ...

    async def is_running(self) -> bool: ...

    def logs_follow(self) -> AsyncIterator[str]: ...


# ------------------------------------------------------------------
# Compose implementation
# ------------------------------------------------------------------


class ComposeServiceControl:
    """Drives ``<runtime> compose`` for the gateway project.

    The compose file reads the routing config path from
    ``HERMIT_CONFIG_PATH`` and the gateway key from ``LITELLM_MASTER_KEY``.
    """

    def __init__(self, compose_file: str, project: str = "hermit", runtime: str = "docker") -> None:
        self.compose_file = compose_file
        self.project = project
        self.runtime = runtime

    def _argv(self, *args: str) -> list[str]:
        return [self.runtime, "compose", "-f", self.compose_file, "-p", self.project, *args]

    async def _run(self, argv: list[str], env: dict[str, str] | None = None) -> str:
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as exc:
            raise ServiceControlError(argv, None, str(exc)) from exc
        stdout, stderr = await proc.communicate()
        if proc.returncode != 0:
            detail = stderr.decode(errors="replace").strip().splitlines()
            raise ServiceControlError(argv, proc.returncode, detail[-1] if detail else "")
        return stdout.decode(errors="replace")

    async def up(self, config_path: str, token: str) -> None:
        env = os.environ.copy()
        env["LITELLM_MASTER_KEY"] = token
        env["HERMIT_CONFIG_PATH"] = os.path.abspath(config_path)
        await self._run(self._argv("up", "-d"), env=env)

    async def down(self) -> None:
        await self._run(self._argv("down"))

    async def is_running(self) -> bool:
        try:
            out = await self._run(self._argv("ps", "-q"))
        except ServiceControlError as exc:
            logger.debug("Service status check failed: %s", exc)
            return False
        return bool(out.strip())

    async def logs_follow(self) -> AsyncIterator[str]:
        argv = self._argv("logs", "-f")
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as exc:
            raise ServiceControlError(argv, None, str(exc)) from exc
        assert proc.stdout is not None
        try:
            async for line in proc.stdout:
                yield line.decode(errors="replace").rstrip("\n")
        finally:
            if proc.returncode is None:
                proc.terminate()
            await proc.wait()


# ------------------------------------------------------------------
# Dependency defaults
# ------------------------------------------------------------------


def runtime_info_command(runtime: str) -> list[str]:
    return [runtime, "info"]


def default_runtime_launch(runtime: str) -> list[str]:
    """Command that starts the container runtime when it is not up."""
    if sys.platform == "darwin" and runtime == "docker":
        return ["open", "-a", "Docker"]
    if sys.platform == "darwin" and runtime == "podman":
        return ["podman", "machine", "start"]
    return []


def default_local_server_launch() -> list[str]:
    if sys.platform == "darwin":
        return ["open", "-a", "LM Studio"]
    return ["lms", "server", "start"]


async def gateway_healthy(gateway_url: str, health_path: str) -> bool:
    return await http_ok(f"{gateway_url.rstrip('/')}{health_path}")
