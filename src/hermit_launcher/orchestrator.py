"""Session lifecycle: start shared services on first use, stop them on last exit.

Each ``hermit`` invocation is one session.  Sessions are independent
processes that share the cache directory; the "check running -> start ->
register" and "unregister -> maybe stop" sequences run under a
cross-process services lock so two sessions never disagree about whether
the services are in use.
"""

import asyncio
import contextlib
import logging
import os
import secrets
import shlex
import signal
import sys
from collections.abc import AsyncIterator, Sequence
from enum import Enum

from hermit_launcher import providers, readiness, token_store
from hermit_launcher.config_gen import CONFIG_FILENAME, generate, parse_descriptors, write_config
from hermit_launcher.errors import ConfigurationError, DependencyTimeout, Interrupted, ServiceControlError
from hermit_launcher.locking import FileLock
from hermit_launcher.models import LauncherConfig, ModelDescriptor, RoutingConfig
from hermit_launcher.registry import InstanceRegistry, create_registry
from hermit_launcher.services import (
    ComposeServiceControl,
    ServiceControl,
    default_local_server_launch,
    default_runtime_launch,
    gateway_healthy,
    runtime_info_command,
)

logger = logging.getLogger(__name__)

SERVICES_LOCK_FILENAME = ".services.lock"


class LifecycleState(str, Enum):
    IDLE = "idle"
    CONFIG_LOADED = "config_loaded"
    SERVICES_CHECKED = "services_checked"
    RUNNING = "running"
    CLEANING = "cleaning"
    STOPPED = "stopped"


class Orchestrator:
    """Drives one session through :class:`LifecycleState`."""

    def __init__(
        self,
        config: LauncherConfig,
        *,
        control: ServiceControl | None = None,
        registry: InstanceRegistry | None = None,
        poll_interval: float = 1.0,
        grace_period: float = 10.0,
        install_signal_handlers: bool = True,
    ) -> None:
        self.config = config
        self.cache_dir = config.cache_path
        self.control: ServiceControl = control or ComposeServiceControl(
            config.compose_file,
            project=config.compose_project,
            runtime=config.container_runtime,
        )
        self.registry: InstanceRegistry = registry or create_registry(config.registry_backend, self.cache_dir)
        self.poll_interval = poll_interval
        self.grace_period = grace_period
        self._install_handlers = install_signal_handlers

        self.state = LifecycleState.IDLE
        self.descriptors: list[ModelDescriptor] = []
        self.routing: RoutingConfig | None = None
        self.config_path: str | None = None
        self.token: str | None = None
        self.instance_id: str | None = None
        # Set while services this session started have no registered owner.
        self._started_services = False

        self._client: asyncio.subprocess.Process | None = None
        self._signalled = asyncio.Event()
        self._pending_signal: signal.Signals | None = None
        self._cleaned = False

    # ------------------------------------------------------------------
    # State helpers
    # ------------------------------------------------------------------

    def _transition(self, state: LifecycleState) -> None:
        logger.debug("Lifecycle %s -> %s", self.state.value, state.value)
        self.state = state

    @contextlib.asynccontextmanager
    async def _services_lock(self, cancellable: bool = True) -> AsyncIterator[FileLock]:
        """Hold the cross-session services lock.

        While starting up the wait is abandoned on a termination signal;
        shutdown paths pass ``cancellable=False`` so they always finish.
        """
        timeout = self.config.services_lock_timeout
        lock = FileLock(os.path.join(self.cache_dir, SERVICES_LOCK_FILENAME), timeout=timeout)
        try:
            acquired = await lock.acquire_async(cancel=self._signalled if cancellable else None)
        except TimeoutError as exc:
            raise DependencyTimeout("Services lock", timeout) from exc
        if not acquired:
            raise Interrupted("Interrupted while waiting for another session")
        try:
            yield lock
        finally:
            lock.release()

    @property
    def default_model(self) -> str:
        if self.routing is None or not self.routing.entries:
            raise ConfigurationError("No usable models configured")
        return self.routing.entries[0].display_name

    # ------------------------------------------------------------------
    # Idle -> ConfigLoaded
    # ------------------------------------------------------------------

    def load_config(self) -> RoutingConfig:
        """Parse the model list and write the routing config document."""
        self.descriptors = parse_descriptors(self.config.models)
        routing = generate(self.descriptors)
        if not routing.entries:
            raise ConfigurationError("No usable models: every entry was malformed or used an unknown provider")
        self.config_path = write_config(routing, self.cache_dir)
        self.routing = routing
        self._transition(LifecycleState.CONFIG_LOADED)
        return routing

    # ------------------------------------------------------------------
    # ConfigLoaded -> ServicesChecked
    # ------------------------------------------------------------------

    def uses_local_server(self) -> bool:
        return any(
            providers.resolve(d.provider).requires_local_server
            for d in self.descriptors
            if providers.is_known(d.provider)
        )

    def _launcher(self, argv: list[str], name: str) -> readiness.Launch | None:
        if not argv:
            return None

        async def launch() -> None:
            logger.info("%s is not running, starting it...", name)
            await readiness.launch_detached(argv)

        return launch

    async def _ensure(self, check: readiness.Check, launch: readiness.Launch | None, timeout: float) -> readiness.Readiness:
        result = await readiness.ensure(
            check,
            launch,
            timeout,
            interval=self.poll_interval,
            cancel=self._signalled,
        )
        if result is readiness.Readiness.CANCELLED:
            raise Interrupted("Interrupted while waiting for services")
        return result

    async def ensure_local_server(self) -> bool:
        """Advisory: a timeout only logs a warning."""
        url = f"{self.config.local_server_url.rstrip('/')}/models"
        argv = self.config.local_server_launch
        if argv is None:
            argv = default_local_server_launch()

        async def check() -> bool:
            return await readiness.http_ok(url)

        result = await self._ensure(check, self._launcher(argv, "Local model server"), self.config.local_server_timeout)
        if result is readiness.Readiness.READY:
            logger.info("Local model server is ready at %s (make sure your model is loaded)", self.config.local_server_url)
            return True
        logger.warning(
            "Local model server at %s is not ready after %gs; continuing. Start the server and load your model manually.",
            self.config.local_server_url,
            self.config.local_server_timeout,
        )
        return False

    async def ensure_container_runtime(self) -> None:
        """Mandatory: raises :class:`DependencyTimeout` if the runtime never comes up."""
        runtime = self.config.container_runtime
        argv = self.config.runtime_launch
        if argv is None:
            argv = default_runtime_launch(runtime)

        async def check() -> bool:
            return await readiness.command_ok(runtime_info_command(runtime))

        result = await self._ensure(check, self._launcher(argv, f"Container runtime ({runtime})"), self.config.runtime_timeout)
        if result is not readiness.Readiness.READY:
            raise DependencyTimeout(f"Container runtime ({runtime})", self.config.runtime_timeout)
        logger.info("Container runtime (%s) is ready", runtime)

    async def wait_for_gateway(self) -> bool:
        async def check() -> bool:
            return await gateway_healthy(self.config.gateway_url, self.config.gateway_health_path)

        result = await self._ensure(check, None, self.config.gateway_timeout)
        if result is readiness.Readiness.READY:
            return True
        logger.warning("Gateway at %s did not report healthy within %gs", self.config.gateway_url, self.config.gateway_timeout)
        return False

    async def ensure_services(self) -> str:
        """Start the shared services unless another session already did.

        Caller must hold the services lock.  Returns the shared token.
        """
        if self.config_path is None:
            raise RuntimeError("load_config() must run before ensure_services()")

        if await self.control.is_running():
            logger.info("Hermit services already running")
            self.token = await asyncio.to_thread(token_store.get_or_create, self.cache_dir)
        else:
            if self.uses_local_server():
                await self.ensure_local_server()
            await self.ensure_container_runtime()
            self.token = await asyncio.to_thread(token_store.get_or_create, self.cache_dir)
            logger.info("Starting Hermit services...")
            await self.control.up(self.config_path, self.token)
            self._started_services = True
            logger.info("Services started")
            await self.wait_for_gateway()

        self._transition(LifecycleState.SERVICES_CHECKED)
        return self.token

    # ------------------------------------------------------------------
    # ServicesChecked -> Running
    # ------------------------------------------------------------------

    def client_environment(self) -> dict[str, str]:
        if self.token is None:
            raise RuntimeError("No auth token issued yet")
        default = self.default_model
        fast = self.config.fast_model or default
        strong = self.config.strong_model or default
        known = {e.display_name for e in self.routing.entries} if self.routing else set()
        for alias in (fast, strong):
            if alias not in known:
                logger.warning("Model alias '%s' is not in the model list", alias)

        env = os.environ.copy()
        env.update(
            {
                "ANTHROPIC_AUTH_TOKEN": self.token,
                "ANTHROPIC_BASE_URL": self.config.gateway_url,
                "ANTHROPIC_MODEL": default,
                "ANTHROPIC_DEFAULT_HAIKU_MODEL": fast,
                "ANTHROPIC_DEFAULT_SONNET_MODEL": default,
                "ANTHROPIC_DEFAULT_OPUS_MODEL": strong,
                "CLAUDE_CODE_SUBAGENT_MODEL": default,
                "CLAUDE_CODE_DISABLE_NONESSENTIAL_TRAFFIC": "1",
            }
        )
        return env

    def client_argv(self, args: Sequence[str] = ()) -> list[str]:
        args = list(args)
        if not any(a == "--model" or a.startswith("--model=") for a in args):
            args = ["--model", self.default_model, *args]
        return [*self.config.client_command, *args]

    def _log_models(self) -> None:
        names = {e.display_name for e in self.routing.entries} if self.routing else set()
        logger.info("Available models:")
        for d in self.descriptors:
            if d.name in names:
                logger.info("  - %s (%s)", d.name, d.provider)

    async def _register(self) -> str:
        self.instance_id = secrets.token_hex(8)
        await self.registry.register(self.instance_id)
        self._started_services = False
        logger.debug("Registered instance %s", self.instance_id)
        return self.instance_id

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    def _on_signal(self, sig: signal.Signals) -> None:
        if self._signalled.is_set():
            logger.debug("Ignoring repeated %s", sig.name)
            return
        logger.info("Received %s, shutting down", sig.name)
        self._pending_signal = sig
        self._forward_signal()
        self._signalled.set()

    def _forward_signal(self) -> None:
        client = self._client
        if client is None or client.returncode is not None or self._pending_signal is None:
            return
        try:
            client.send_signal(self._pending_signal)
        except ProcessLookupError:
            pass

    def _set_signal_handlers(self, install: bool) -> None:
        if not self._install_handlers:
            return
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                if install:
                    loop.add_signal_handler(sig, self._on_signal, sig)
                else:
                    loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                # Not on the main thread or not supported by this loop.
                return

    # ------------------------------------------------------------------
    # Running -> Cleaning -> Stopped
    # ------------------------------------------------------------------

    async def _run_client(self, args: Sequence[str]) -> int:
        argv = self.client_argv(args)
        logger.info("Starting %s...", argv[0])
        try:
            self._client = await asyncio.create_subprocess_exec(*argv, env=self.client_environment())
        except OSError as exc:
            raise ConfigurationError(f"Cannot launch client '{argv[0]}': {exc}") from exc
        self._transition(LifecycleState.RUNNING)
        # A signal may have arrived while the client was being spawned.
        self._forward_signal()

        wait_task = asyncio.create_task(self._client.wait())
        signal_task = asyncio.create_task(self._signalled.wait())
        try:
            await asyncio.wait({wait_task, signal_task}, return_when=asyncio.FIRST_COMPLETED)
            if not wait_task.done():
                try:
                    await asyncio.wait_for(asyncio.shield(wait_task), self.grace_period)
                except asyncio.TimeoutError:
                    logger.warning("%s did not exit after %gs, killing it", argv[0], self.grace_period)
                    self._client.kill()
                    await wait_task
        finally:
            signal_task.cancel()

        returncode = wait_task.result()
        logger.info("%s exited", argv[0])
        if self._signalled.is_set():
            return 0
        return returncode if returncode > 0 else 0

    async def _teardown(self) -> None:
        try:
            await self.control.down()
            logger.info("Stopped Hermit services")
        except ServiceControlError as exc:
            logger.error("Error stopping services: %s", exc)
        token_store.remove(self.cache_dir)

    async def cleanup(self) -> None:
        """Release this session's lease; stop the services if it was the last.

        Idempotent.  Errors are logged and never abort shutdown.
        """
        if self._cleaned:
            return
        self._cleaned = True
        if self.instance_id is None:
            if self._started_services:
                await self._abandon_services()
            self._transition(LifecycleState.STOPPED)
            return

        self._transition(LifecycleState.CLEANING)
        try:
            async with self._services_lock(cancellable=False):
                is_last = await self.registry.unregister(self.instance_id)
                if is_last:
                    logger.info("Stopping Hermit services (no other instances running)...")
                    await self._teardown()
                else:
                    remaining = len(await self.registry.list_instances())
                    logger.info("Hermit services are still running (%d other instance(s) active).", remaining)
                    logger.info("To stop them, run: hermit stop")
        except Exception:
            logger.exception("Cleanup of instance %s failed", self.instance_id)
        self._transition(LifecycleState.STOPPED)

    async def _abandon_services(self) -> None:
        """Stop services this session started but never registered against."""
        self._transition(LifecycleState.CLEANING)
        try:
            async with self._services_lock(cancellable=False):
                remaining = await self.registry.list_instances()
                if remaining:
                    logger.info(
                        "Hermit services are in use by %d other instance(s); leaving them running",
                        len(remaining),
                    )
                    return
                logger.info("Stopping Hermit services started by this session...")
                await self._teardown()
        except Exception:
            logger.exception("Stopping services after an aborted startup failed")
        finally:
            self._started_services = False

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def run(self, client_args: Sequence[str] = (), detach: bool = False) -> int:
        """Run one full session and return the process exit status."""
        self._set_signal_handlers(True)
        try:
            self.load_config()
            async with self._services_lock():
                await self.ensure_services()
                if detach:
                    self._print_environment()
                    self._started_services = False
                    self._transition(LifecycleState.STOPPED)
                    return 0
                await self._register()
            self._log_models()
            return await self._run_client(client_args)
        finally:
            await self.cleanup()
            self._set_signal_handlers(False)

    def _print_environment(self) -> None:
        env = self.client_environment()
        keys = [k for k in env if k.startswith(("ANTHROPIC_", "CLAUDE_CODE_"))]
        for key in sorted(keys):
            sys.stdout.write(f"export {key}={shlex.quote(env[key])}\n")
        sys.stdout.flush()
        logger.info("Services are running detached; stop them with: hermit stop")

    async def stop_all(self) -> None:
        """Tear everything down regardless of registered instances."""
        async with self._services_lock(cancellable=False):
            logger.info("Stopping Hermit services...")
            await self._teardown()
            await self.registry.clear()
            config_path = os.path.join(self.cache_dir, CONFIG_FILENAME)
            if os.path.exists(config_path):
                os.unlink(config_path)
            logger.info("Cleaned up cache files")
        self._transition(LifecycleState.STOPPED)
