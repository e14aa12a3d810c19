"""Config loading and the ``hermit`` command-line entry point.

Usage::

    hermit [--config PATH] [--detach] [CLIENT ARGS...]
    hermit stop
    hermit logs
"""

import argparse
import asyncio
import logging
import os
import sys
from typing import Any

import yaml

from hermit_launcher.errors import ConfigurationError, HermitError, Interrupted
from hermit_launcher.models import LauncherConfig
from hermit_launcher.orchestrator import Orchestrator
from hermit_launcher.services import ComposeServiceControl

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "hermit.yaml"

ENV_MAP = {
    "HERMIT_CACHE_DIR": "cache_dir",
    "HERMIT_GATEWAY_URL": "gateway_url",
    "HERMIT_LOG_LEVEL": "log_level",
    "HERMIT_REGISTRY": "registry_backend",
    "HERMIT_CONTAINER_RUNTIME": "container_runtime",
}

COMMANDS = ("stop", "logs")


# ------------------------------------------------------------------
# Config loading
# ------------------------------------------------------------------


def find_config_file(explicit: str | None = None) -> str | None:
    """Return the first existing config file, or None."""
    if explicit:
        return explicit
    candidates = [
        os.environ.get("HERMIT_CONFIG"),
        os.path.join(os.getcwd(), CONFIG_FILENAME),
        os.path.join(os.path.expanduser("~/.hermit"), CONFIG_FILENAME),
    ]
    for path in candidates:
        if path and os.path.isfile(path):
            return path
    return None


def load_config(args: argparse.Namespace, require_file: bool = True) -> LauncherConfig:
    """Build a ``LauncherConfig`` from the YAML file, env vars, and CLI args."""
    data: dict[str, Any] = {}

    # 1. YAML file (lowest priority)
    config_path = find_config_file(getattr(args, "config", None))
    if config_path:
        try:
            with open(config_path) as f:
                loaded = yaml.safe_load(f) or {}
        except OSError as exc:
            raise ConfigurationError(f"Cannot read config file {config_path}: {exc}") from exc
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {exc}") from exc
        if not isinstance(loaded, dict):
            raise ConfigurationError(f"{config_path} must contain a mapping")
        data.update(loaded)
    elif require_file:
        raise ConfigurationError(f"No {CONFIG_FILENAME} found (use --config or set HERMIT_CONFIG)")

    # 2. Env vars
    for env_key, config_key in ENV_MAP.items():
        val = os.environ.get(env_key)
        if val is not None:
            data[config_key] = val

    # 3. CLI args (highest priority)
    if getattr(args, "cache_dir", None) is not None:
        data["cache_dir"] = args.cache_dir
    if getattr(args, "log_level", None) is not None:
        data["log_level"] = args.log_level
    if getattr(args, "registry", None) is not None:
        data["registry_backend"] = args.registry

    try:
        return LauncherConfig(**data)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc


# ------------------------------------------------------------------
# CLI entrypoint
# ------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hermit",
        description="Run a coding client against a shared local LLM gateway",
        # Client flags pass through untouched, so never match them by prefix
        allow_abbrev=False,
    )
    parser.add_argument("--config", type=str, default=None, help="Path to hermit.yaml")
    parser.add_argument("--cache-dir", type=str, default=None)
    parser.add_argument("--registry", type=str, default=None, choices=["file", "sqlite", "memory"])
    parser.add_argument("--log-level", type=str, default=None)
    parser.add_argument(
        "--detach",
        action="store_true",
        help="Start the services and print the client environment instead of launching the client",
    )
    return parser


def parse_args(argv: list[str]) -> tuple[argparse.Namespace, str | None, list[str]]:
    """Split *argv* into launcher options, an optional command, and client args."""
    parser = build_parser()
    args, rest = parser.parse_known_args(argv)
    command = None
    if rest and rest[0] in COMMANDS:
        command, rest = rest[0], rest[1:]
    return args, command, rest


async def _follow_logs(config: LauncherConfig) -> int:
    control = ComposeServiceControl(
        config.compose_file,
        project=config.compose_project,
        runtime=config.container_runtime,
    )
    async for line in control.logs_follow():
        print(line, flush=True)
    return 0


async def _dispatch(config: LauncherConfig, command: str | None, client_args: list[str], detach: bool) -> int:
    if command == "logs":
        return await _follow_logs(config)
    orchestrator = Orchestrator(config)
    if command == "stop":
        await orchestrator.stop_all()
        return 0
    return await orchestrator.run(client_args, detach=detach)


def main(argv: list[str] | None = None) -> None:
    args, command, client_args = parse_args(sys.argv[1:] if argv is None else argv)

    try:
        # stop/logs only need launcher settings, not a model list
        config = load_config(args, require_file=command is None)
    except ConfigurationError as exc:
        logging.basicConfig(level=logging.INFO, format="%(message)s")
        logger.error("Error: %s", exc)
        sys.exit(1)

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(message)s",
    )

    try:
        code = asyncio.run(_dispatch(config, command, client_args, args.detach))
    except Interrupted as exc:
        logger.info("%s", exc)
        code = 130
    except HermitError as exc:
        logger.error("Error: %s", exc)
        sys.exit(1)
    except KeyboardInterrupt:
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
