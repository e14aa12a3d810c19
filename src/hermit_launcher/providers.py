"""Provider template registry.

Adding a provider is a single entry in :data:`PROVIDERS`; the generator
dispatches on ``behavior_class`` and never on the provider name.
"""

from hermit_launcher.errors import ProviderNotFound
from hermit_launcher.models import BehaviorClass, ProviderTemplate

PROVIDERS: dict[str, ProviderTemplate] = {
    # OpenAI-compatible server on the host, seen from inside the gateway container.
    "local": ProviderTemplate(
        api_base="http://host.docker.internal:1234/v1",
        api_key_ref="lm-studio",
        model_prefix="openai/",
        behavior_class=BehaviorClass.DECODING_PASSTHROUGH,
        requires_local_server=True,
    ),
    "openrouter": ProviderTemplate(
        api_base="https://openrouter.ai/api/v1",
        api_key_ref="os.environ/OPENROUTER_API_KEY",
        model_prefix="openrouter/",
    ),
    "huggingface": ProviderTemplate(
        api_base="https://router.huggingface.co/v1",
        api_key_ref="os.environ/HF_API_KEY",
        model_prefix="huggingface/",
        behavior_class=BehaviorClass.STRICT_HOSTED,
        extra_params={"drop_params": True},
        max_tokens_cap=8192,
        supports_vision=False,
        supports_function_calling=False,
    ),
    "anthropic": ProviderTemplate(
        api_key_ref="os.environ/ANTHROPIC_API_KEY",
        model_prefix="anthropic/",
    ),
}

ALIASES: dict[str, str] = {
    "lmstudio": "local",
}


def resolve(provider_id: str) -> ProviderTemplate:
    """Return the template for *provider_id* or raise :class:`ProviderNotFound`."""
    key = ALIASES.get(provider_id, provider_id)
    try:
        return PROVIDERS[key]
    except KeyError:
        raise ProviderNotFound(provider_id) from None


def is_known(provider_id: str) -> bool:
    return ALIASES.get(provider_id, provider_id) in PROVIDERS
