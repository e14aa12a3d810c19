"""Routing config generation: model list + provider templates -> gateway YAML.

The document is always regenerated in full and written atomically
(temp file in the same directory, then ``os.replace``) so the gateway
never sees a partial config.
"""

import logging
import os
import tempfile
from collections.abc import Callable, Iterable, Sequence
from typing import Any

import yaml

from hermit_launcher import providers
from hermit_launcher.errors import ConfigurationError, ProviderNotFound
from hermit_launcher.models import (
    BehaviorClass,
    GlobalSettings,
    ModelDescriptor,
    ProviderTemplate,
    RoutingConfig,
    RoutingEntry,
)

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.yaml"

DECODING_PARAMS = ("max_tokens", "repetition_penalty", "temperature", "top_k", "top_p")

_REQUIRED_FIELDS = ("name", "provider", "model")

_NUMERIC_PARAMS = {
    "max_tokens": int,
    "top_k": int,
    "repetition_penalty": float,
    "temperature": float,
    "top_p": float,
}


# ------------------------------------------------------------------
# Descriptor parsing
# ------------------------------------------------------------------


def parse_descriptors(raw: Iterable[Any] | None) -> list[ModelDescriptor]:
    """Turn raw ``models:`` entries into descriptors.

    Malformed entries are dropped with a warning: not a mapping, missing a
    required field, a non-numeric decoding parameter, or a reused name.
    Numeric strings such as ``"4096"`` are coerced.
    """
    descriptors: list[ModelDescriptor] = []
    seen: set[str] = set()
    for item in raw or []:
        if not isinstance(item, dict):
            logger.warning("Skipping model entry that is not a mapping: %r", item)
            continue
        data = dict(item)
        if "model" not in data and "model_id" in data:
            data["model"] = data.pop("model_id")
        missing = [f for f in _REQUIRED_FIELDS if not data.get(f)]
        if missing:
            logger.warning("Skipping incomplete model definition (missing %s): %r", ", ".join(missing), item)
            continue
        bad = _coerce_numeric(data)
        if bad:
            logger.warning("Skipping model definition with non-numeric %s: %r", ", ".join(bad), item)
            continue
        name = str(data.pop("name"))
        if name in seen:
            logger.warning("Skipping duplicate model name '%s'", name)
            continue
        seen.add(name)
        descriptors.append(
            ModelDescriptor(
                name=name,
                provider=str(data.pop("provider")),
                model_id=str(data.pop("model")),
                optional_params=data,
            )
        )
    return descriptors


def _coerce_numeric(data: dict[str, Any]) -> list[str]:
    """Coerce known decoding params in place; return the keys that failed."""
    bad = []
    for key, cast in _NUMERIC_PARAMS.items():
        value = data.get(key)
        if value is None:
            continue
        if isinstance(value, bool):
            bad.append(key)
            continue
        try:
            data[key] = cast(float(value)) if cast is int else cast(value)
        except (TypeError, ValueError, OverflowError):
            bad.append(key)
    return bad


# ------------------------------------------------------------------
# Behavior-class merge policies
# ------------------------------------------------------------------


def _merge_passthrough(descriptor: ModelDescriptor, template: ProviderTemplate) -> tuple[dict[str, Any], None]:
    params = dict(template.extra_params)
    for key in DECODING_PARAMS:
        value = descriptor.optional_params.get(key)
        if value is not None:
            params[key] = value
    return params, None


def _merge_strict_hosted(
    descriptor: ModelDescriptor, template: ProviderTemplate
) -> tuple[dict[str, Any], dict[str, Any]]:
    cap = template.max_tokens_cap
    requested = descriptor.optional_params.get("max_tokens")
    max_tokens = min(int(requested), cap) if requested is not None else cap
    params = dict(template.extra_params)
    params["max_tokens"] = max_tokens
    params["num_retries"] = 0
    model_info = {
        "max_tokens": max_tokens,
        "max_output_tokens": max_tokens,
        "supports_vision": template.supports_vision,
        "supports_function_calling": template.supports_function_calling,
    }
    return params, model_info


def _merge_plain(descriptor: ModelDescriptor, template: ProviderTemplate) -> tuple[dict[str, Any], None]:
    return dict(template.extra_params), None


_MERGE_POLICIES: dict[
    BehaviorClass,
    Callable[[ModelDescriptor, ProviderTemplate], tuple[dict[str, Any], dict[str, Any] | None]],
] = {
    BehaviorClass.DECODING_PASSTHROUGH: _merge_passthrough,
    BehaviorClass.STRICT_HOSTED: _merge_strict_hosted,
    BehaviorClass.PLAIN: _merge_plain,
}


# ------------------------------------------------------------------
# Generation
# ------------------------------------------------------------------


def build_entry(descriptor: ModelDescriptor, template: ProviderTemplate) -> RoutingEntry:
    params, model_info = _MERGE_POLICIES[template.behavior_class](descriptor, template)
    return RoutingEntry(
        display_name=descriptor.name,
        resolved_model=f"{template.model_prefix}{descriptor.model_id}",
        api_key_ref=template.api_key_ref,
        api_base=template.api_base,
        merged_params=params,
        model_info=model_info,
    )


def generate(descriptors: Sequence[ModelDescriptor] | None) -> RoutingConfig:
    """Build a :class:`RoutingConfig`; unknown providers are skipped.

    Raises :class:`ConfigurationError` when *descriptors* is empty or None.
    The result may still have zero entries if every provider was unknown;
    callers decide whether that is fatal.
    """
    if not descriptors:
        raise ConfigurationError("No models defined in the model list")

    entries: list[RoutingEntry] = []
    for descriptor in descriptors:
        try:
            template = providers.resolve(descriptor.provider)
        except ProviderNotFound:
            logger.warning(
                "Unknown provider '%s' for model '%s'. Skipping.",
                descriptor.provider,
                descriptor.name,
            )
            continue
        try:
            entries.append(build_entry(descriptor, template))
        except (TypeError, ValueError) as exc:
            logger.warning("Skipping model '%s' with invalid parameters: %s", descriptor.name, exc)

    return RoutingConfig(
        entries=entries,
        global_settings=GlobalSettings(retries_disabled=True, allowed_failures=0),
    )


def to_document(config: RoutingConfig) -> dict[str, Any]:
    """Render *config* into the gateway's YAML structure."""
    model_list: list[dict[str, Any]] = []
    for entry in config.entries:
        params: dict[str, Any] = {"model": entry.resolved_model, "api_key": entry.api_key_ref}
        if entry.api_base:
            params["api_base"] = entry.api_base
        params.update(entry.merged_params)
        item: dict[str, Any] = {"model_name": entry.display_name, "litellm_params": params}
        if entry.model_info is not None:
            item["model_info"] = dict(entry.model_info)
        model_list.append(item)

    settings = config.global_settings
    router_settings: dict[str, Any] = {"allowed_fails": settings.allowed_failures}
    if settings.retries_disabled:
        router_settings["num_retries"] = 0
    return {
        "model_list": model_list,
        "general_settings": {
            "retries_disabled": settings.retries_disabled,
            "allowed_failures": settings.allowed_failures,
        },
        "router_settings": router_settings,
    }


def write_config(config: RoutingConfig, cache_dir: str) -> str:
    """Atomically write *config* to ``<cache_dir>/config.yaml`` and return the path."""
    os.makedirs(cache_dir, exist_ok=True)
    path = os.path.join(cache_dir, CONFIG_FILENAME)
    text = yaml.safe_dump(to_document(config), sort_keys=False)

    fd, tmp_path = tempfile.mkstemp(dir=cache_dir, prefix=".config-", suffix=".yaml.tmp")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise
    logger.info("Generated %s with %d model(s)", CONFIG_FILENAME, len(config.entries))
    return path
