"""Pydantic data models for hermit-launcher."""

import os
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_COMPOSE_FILE = os.path.join(os.path.dirname(__file__), "docker", "docker-compose.yml")


class ModelDescriptor(BaseModel):
    """One entry of the declarative model list."""

    model_config = ConfigDict(frozen=True)

    name: str
    provider: str
    model_id: str
    optional_params: dict[str, Any] = Field(default_factory=dict)


class BehaviorClass(str, Enum):
    """How a provider's connection parameters are merged."""

    # Attach decoding parameters present on the descriptor.
    DECODING_PASSTHROUGH = "decoding-passthrough"
    # Cap max_tokens, disable retries, attach a model_info block.
    STRICT_HOSTED = "strict-hosted"
    # Connection fields only.
    PLAIN = "plain"


class ProviderTemplate(BaseModel):
    """Static connection profile for one backend vendor."""

    model_config = ConfigDict(frozen=True)

    api_base: str | None = None
    api_key_ref: str
    model_prefix: str
    behavior_class: BehaviorClass = BehaviorClass.PLAIN
    extra_params: dict[str, Any] = Field(default_factory=dict)
    # Set for providers served by the optional local model server.
    requires_local_server: bool = False
    # strict-hosted only
    max_tokens_cap: int = 8192
    supports_vision: bool = True
    supports_function_calling: bool = True


class RoutingEntry(BaseModel):
    """A resolved model: what the gateway needs to route one model name."""

    display_name: str
    resolved_model: str
    api_key_ref: str
    api_base: str | None = None
    merged_params: dict[str, Any] = Field(default_factory=dict)
    model_info: dict[str, Any] | None = None


class GlobalSettings(BaseModel):
    retries_disabled: bool = True
    allowed_failures: int = 0


class RoutingConfig(BaseModel):
    """The full routing document handed to the shared gateway."""

    entries: list[RoutingEntry] = Field(default_factory=list)
    global_settings: GlobalSettings = Field(default_factory=GlobalSettings)


class LauncherConfig(BaseModel):
    """Top-level launcher configuration."""

    cache_dir: str = "~/.hermit"
    models: list[dict[str, Any]] = Field(default_factory=list)
    # Shared gateway
    gateway_url: str = "http://localhost:4000"
    gateway_health_path: str = "/health/liveliness"
    gateway_timeout: float = 60.0
    compose_file: str = DEFAULT_COMPOSE_FILE
    compose_project: str = "hermit"
    container_runtime: str = "docker"
    runtime_launch: list[str] | None = None
    runtime_timeout: float = 60.0
    # Optional local model server
    local_server_url: str = "http://localhost:1234/v1"
    local_server_launch: list[str] | None = None
    local_server_timeout: float = 30.0
    # Sessions
    registry_backend: str = "file"
    services_lock_timeout: float = 300.0
    client_command: list[str] = Field(default_factory=lambda: ["claude"])
    fast_model: str | None = None
    strong_model: str | None = None
    log_level: str = "INFO"

    @property
    def cache_path(self) -> str:
        return os.path.expanduser(self.cache_dir)
