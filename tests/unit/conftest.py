"""Shared fixtures for hermit-launcher tests."""

import asyncio
import threading
import time
from typing import Any

import pytest
import uvicorn
from fastapi import FastAPI
from hermit_launcher.models import LauncherConfig

# ------------------------------------------------------------------
# Mock model server / gateway
# ------------------------------------------------------------------


def _build_mock_app() -> FastAPI:
    """Minimal OpenAI-compatible server that also answers gateway health."""
    app = FastAPI()
    app.state.hits = 0

    @app.get("/v1/models")
    async def models():
        app.state.hits += 1
        return {"data": [{"id": "mock-model", "object": "model"}]}

    @app.get("/health/liveliness")
    async def liveliness():
        return "I'm alive!"

    return app


class MockModelServer:
    """Run the mock server in a background thread."""

    def __init__(self, host: str = "127.0.0.1", port: int = 0) -> None:
        self.host = host
        self.port = port
        self.app = _build_mock_app()
        self._server: uvicorn.Server | None = None
        self._thread: threading.Thread | None = None

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def start(self) -> None:
        config = uvicorn.Config(self.app, host=self.host, port=self.port, log_level="error")
        self._server = uvicorn.Server(config)
        self._thread = threading.Thread(target=self._server.run, daemon=True)
        self._thread.start()
        deadline = time.time() + 5.0
        while time.time() < deadline:
            if self._server.started:
                for sock in self._server.servers:
                    self.port = sock.sockets[0].getsockname()[1]
                return
            time.sleep(0.05)
        raise RuntimeError("Mock model server failed to start")

    def stop(self) -> None:
        if self._server is not None:
            self._server.should_exit = True
        if self._thread is not None:
            self._thread.join(timeout=5.0)


# ------------------------------------------------------------------
# Fake service control
# ------------------------------------------------------------------


class FakeServiceControl:
    """In-process stand-in for the compose-managed gateway.

    Shared between orchestrators to simulate several sessions talking to
    the same container runtime.
    """

    def __init__(self, up_delay: float = 0.0, fail_up: bool = False, fail_down: bool = False) -> None:
        self.running = False
        self.up_calls: list[dict[str, Any]] = []
        self.down_calls = 0
        self.up_delay = up_delay
        self.fail_up = fail_up
        self.fail_down = fail_down

    async def up(self, config_path: str, token: str) -> None:
        from hermit_launcher.errors import ServiceControlError

        self.up_calls.append({"config_path": config_path, "token": token})
        if self.up_delay:
            await asyncio.sleep(self.up_delay)
        if self.fail_up:
            raise ServiceControlError(["compose", "up"], 1, "boom")
        self.running = True

    async def down(self) -> None:
        from hermit_launcher.errors import ServiceControlError

        self.down_calls += 1
        if self.fail_down:
            raise ServiceControlError(["compose", "down"], 1, "boom")
        self.running = False

    async def is_running(self) -> bool:
        return self.running

    async def logs_follow(self):
        for line in ("gateway: started", "gateway: ready"):
            yield line


# ------------------------------------------------------------------
# Fixtures
# ------------------------------------------------------------------


@pytest.fixture
def cache_dir(tmp_path) -> str:
    return str(tmp_path / "cache")


@pytest.fixture
def mock_server():
    server = MockModelServer(port=0)
    server.start()
    yield server
    server.stop()


@pytest.fixture
def fake_control() -> FakeServiceControl:
    return FakeServiceControl()


@pytest.fixture
def launcher_config(cache_dir: str, mock_server: MockModelServer) -> LauncherConfig:
    """Config whose dependencies are all satisfied locally.

    ``true info`` stands in for the container runtime check and the mock
    server answers both the local model server and gateway health probes.
    """
    return LauncherConfig(
        cache_dir=cache_dir,
        models=[
            {"name": "local", "provider": "local", "model": "qwen3-coder", "temperature": 0.7},
            {"name": "kimi", "provider": "openrouter", "model": "moonshotai/kimi-k2"},
        ],
        gateway_url=mock_server.url,
        gateway_timeout=2,
        container_runtime="true",
        runtime_launch=[],
        runtime_timeout=2,
        local_server_url=f"{mock_server.url}/v1",
        local_server_launch=[],
        local_server_timeout=2,
    )


@pytest.fixture
def make_control():
    """Factory for ``FakeServiceControl`` with non-default behaviour."""
    return FakeServiceControl
