"""hermit-launcher: share one local LLM gateway between many client sessions."""

from hermit_launcher._version import __version__
from hermit_launcher.config_gen import generate, parse_descriptors, write_config
from hermit_launcher.errors import (
    ConfigurationError,
    DependencyTimeout,
    HermitError,
    Interrupted,
    ProviderNotFound,
    ServiceControlError,
)
from hermit_launcher.models import (
    BehaviorClass,
    LauncherConfig,
    ModelDescriptor,
    ProviderTemplate,
    RoutingConfig,
    RoutingEntry,
)
from hermit_launcher.orchestrator import LifecycleState, Orchestrator

__all__ = [
    "__version__",
    "generate",
    "parse_descriptors",
    "write_config",
    "HermitError",
    "ConfigurationError",
    "DependencyTimeout",
    "Interrupted",
    "ProviderNotFound",
    "ServiceControlError",
    "BehaviorClass",
    "LauncherConfig",
    "ModelDescriptor",
    "ProviderTemplate",
    "RoutingConfig",
    "RoutingEntry",
    "LifecycleState",
    "Orchestrator",
]
