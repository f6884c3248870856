"""Model provider adapter factory and exports."""
from typing import Type

from adapters.base_http import BaseHTTPAdapter
from adapters.cerebras import CerebrasAdapter
from adapters.groq import GroqAdapter
from adapters.openai_compatible import OpenAICompatibleAdapter
from adapters.openrouter import OpenRouterAdapter
from models.config import ProviderConfig

PROVIDER_ADAPTERS: dict[str, Type[OpenAICompatibleAdapter]] = {
    "cerebras": CerebrasAdapter,
    "groq": GroqAdapter,
    "openrouter": OpenRouterAdapter,
}


def default_model(name: str) -> str:
    """Default model id for a provider."""
    if name not in PROVIDER_ADAPTERS:
        raise ValueError(
            f"Unknown provider: '{name}'. "
            f"Supported providers: {', '.join(PROVIDER_ADAPTERS.keys())}"
        )
    return PROVIDER_ADAPTERS[name].DEFAULT_MODEL


def create_adapter(name: str, config: ProviderConfig) -> BaseHTTPAdapter:
    """
    Factory function to create a provider adapter.

    Args:
        name: Provider name ('cerebras', 'groq' or 'openrouter')
        config: Provider configuration

    Returns:
        Adapter instance for the provider

    Raises:
        ValueError: If provider is not supported
        TypeError: If config is not a ProviderConfig
    """
    if not isinstance(config, ProviderConfig):
        raise TypeError(
            f"Invalid config type: {type(config)}. Expected ProviderConfig"
        )

    if name not in PROVIDER_ADAPTERS:
        raise ValueError(
            f"Unknown provider: '{name}'. "
            f"Supported providers: {', '.join(PROVIDER_ADAPTERS.keys())}"
        )

    return PROVIDER_ADAPTERS[name](
        base_url=config.base_url,
        timeout=config.timeout,
        max_retries=config.max_retries,
        api_key=config.api_key,
        headers=config.headers,
    )


__all__ = [
    "BaseHTTPAdapter",
    "CerebrasAdapter",
    "GroqAdapter",
    "OpenAICompatibleAdapter",
    "OpenRouterAdapter",
    "PROVIDER_ADAPTERS",
    "create_adapter",
    "default_model",
]
